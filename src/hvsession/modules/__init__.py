"""hvsession modules - Self-contained bricks following the brick philosophy

Each module is a self-contained component with clear contracts:
- Command Adapter: Run hypervisor CLI commands with timeouts
- CLI Detector: Locate the hypervisor binary
- Progress: Report multi-step operation progress
- Interaction Handler: Ask the user for confirmations and license acceptance
"""
