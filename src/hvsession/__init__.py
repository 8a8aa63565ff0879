"""hvsession - virtual machine session orchestration over a hypervisor CLI

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- The hypervisor is the source of truth; persisted state is reconciled against it
- Fail with a status, never with an unstructured fault

hvsession drives a locally installed hypervisor (VirtualBox's VBoxManage)
to create, start, pause, save and destroy VM sessions, keeps session
descriptors consistent with the hypervisor's live VM list, and installs the
extension pack after verifying its checksum.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
