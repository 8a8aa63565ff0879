"""
Canned VBoxManage output for testing.

This module provides realistic output of the hypervisor command-line
tool for the queries hvsession issues.
"""

# ============================================================================
# VERSION / INTEGRITY
# ============================================================================

VERSION_OUTPUT = "6.1.38r153438\n"

VERSION_OUTPUT_DRIVER_NOT_LOADED = """\
WARNING: The vboxdrv kernel module is not loaded. Either there is no module
         available for the current kernel (5.15.0-91-generic) or it failed to
         load. Please recompile the kernel module and install it by

           sudo /sbin/vboxconfig

         You will not be able to start VMs until this problem is fixed.
6.1.38r153438
"""

VERSION_OUTPUT_OTHER_WARNING = """\
WARNING: The character device /dev/vboxdrv does not exist.
6.1.38r153438
"""

VERSION_OUTPUT_ERROR = """\
ERROR: failed to create a session object!
"""

SYSTEM_PROPERTIES_OUTPUT = """\
API version:                     6_1
Minimum guest RAM size:          4 Megabytes
Maximum guest RAM size:          2097152 Megabytes
Minimum video RAM size:          0 Megabytes
Maximum video RAM size:          256 Megabytes
Maximum guest monitor count:     64
Minimum guest CPU count:         1
Maximum guest CPU count:         32
Virtual disk limit (info):       2199022206976 Bytes
Maximum Serial Port count:       4
Default machine folder:          /home/user/VirtualBox VMs
Default Guest Additions ISO:     /usr/share/virtualbox/VBoxGuestAdditions.iso
Maximum guest RAM size:          1 Megabytes
"""

# ============================================================================
# HOST CPU IDS
# ============================================================================

HOST_CPUIDS_INTEL = """\
Host CPUIDs:

Leaf no.  EAX      EBX      ECX      EDX
00000000  0000000d 756e6547 6c65746e 49656e69
00000001  000306a9 00100800 7fbae3ff bfebfbff
00000002  76035a01 00f0b2ff 00000000 00ca0000
80000000  80000008 00000000 00000000 00000000
80000001  00000000 00000000 00000001 28100800
"""

HOST_CPUIDS_AMD = """\
Host CPUIDs:

Leaf no.  EAX      EBX      ECX      EDX
00000000  00000010 68747541 444d4163 69746e65
00000001  00a20f12 00100800 7ef8320b 178bfbff
80000001  00a20f12 20000000 75c237ff 2fd3fbff
"""

# ============================================================================
# VM LISTINGS
# ============================================================================

VM_UUID_1 = "0b7a2d71-6a1f-4b5e-9c55-1f1e2d3c4b5a"
VM_UUID_2 = "4c8f0e6a-1b2c-4d3e-8f9a-0a1b2c3d4e5f"
VM_UUID_INACCESSIBLE = "99999999-0000-0000-0000-000000000000"

LIST_VMS_OUTPUT = f"""\
"build-vm" {{{VM_UUID_1}}}
"test vm with spaces" {{{VM_UUID_2}}}
"<inaccessible>" {{{VM_UUID_INACCESSIBLE}}}
"""

LIST_VMS_DUPLICATE = f"""\
"first-name" {{{VM_UUID_1}}}
"second-name" {{{VM_UUID_1}}}
"""

# ============================================================================
# MACHINE INFO
# ============================================================================


def machine_info(state: str = "powered off (since 2024-05-01T10:00:00.000000000)") -> str:
    """showvminfo output with the given State: value."""
    return f"""\
Name:                        build-vm
Groups:                      /
Guest OS:                    Ubuntu (64-bit)
UUID:                        {VM_UUID_1}
Config file:                 /home/user/VirtualBox VMs/build-vm/build-vm.vbox
Memory size:                 2048MB
Number of CPUs:              2
State:                       {state}
Log folder:                  /home/user/VirtualBox VMs/build-vm/Logs
Name:                        shadowed-duplicate
"""


CREATEVM_OUTPUT = f"""\
Virtual machine 'build-vm' is created and registered.
UUID: {VM_UUID_1}
Settings file: '/home/user/VirtualBox VMs/build-vm/build-vm.vbox'
"""

# ============================================================================
# GUEST PROPERTIES
# ============================================================================

GUESTPROPERTY_GET_OUTPUT = "Value: 10.0.2.15\n"
GUESTPROPERTY_GET_MISSING = "No value set!\n"

GUESTPROPERTY_ENUMERATE_OUTPUT = """\
Name: /VirtualBox/GuestInfo/Net/0/V4/IP, value: 10.0.2.15, timestamp: 1714557600000000000, flags:
Name: /VirtualBox/GuestAdd/Version, value: 6.1.38, timestamp: 1714557500000000000, flags:
Name: /VirtualBox/HostInfo/Empty, value:, timestamp: 1714557400000000000, flags:
garbage line without anchors
Name: /Broken/NoTimestamp, value: orphan
"""

# ============================================================================
# DISKS / EXTENSION PACKS / LOGS
# ============================================================================

LIST_HDDS_OUTPUT = """\
UUID:           6d1a9f3c-1111-2222-3333-444455556666
Parent UUID:    base
State:          created
Type:           normal (base)
Location:       /home/user/VirtualBox VMs/build-vm/build-vm.vdi
Storage format: VDI
Capacity:       20480 MBytes
Encryption:     disabled

UUID:           7e2b0a4d-7777-8888-9999-aaaabbbbcccc
Parent UUID:    base
State:          inaccessible
Type:           normal (base)
Location:       /home/user/old.vdi
Storage format: VDI
Capacity:       8192 MBytes
Encryption:     disabled
"""

LIST_EXTPACKS_INSTALLED = """\
Extension Packs: 1
Pack no. 0:   Oracle VM VirtualBox Extension Pack
Version:      6.1.38
Revision:     153438
Edition:
Description:  Oracle Cloud Infrastructure integration, USB 2.0 and USB 3.0 Host Controller.
Usable:       true
"""

LIST_EXTPACKS_EMPTY = "Extension Packs: 0\n"

VBOX_LOG_CONTENT = (
    "00:00:00.000000 VirtualBox VM 6.1.38 r153438 linux.amd64 (Aug 31 2022 10:20:23) release log\r\n"
    "00:00:00.000001 Log opened 2024-05-01T10:00:00.000000000Z\r\n"
    "00:00:00.000002 Build Type: release\r\n"
    "00:00:00.000003 Process ID: 48213\r\n"
    "00:00:00.000004 Package type: LINUX_64BITS_GENERIC\r\n"
)
