"""stackgate - single-VM provisioning with a readiness-gated Ansible trigger

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- Idempotent by construction (empty plan, no-op trigger when nothing changed)
- Fail fast with helpful guidance

stackgate provisions one Azure VM for a containerized application stack,
waits until it answers over SSH, and runs an Ansible playbook against it
whenever the instance or the playbook content changes.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
