"""
Approval Kernel

A multi-step approval workflow engine with:
- Per-step fan-out of approver work items
- Serialized step advancement (exactly once per step)
- Fast-fail rejection, submitter recall, and work item reassignment
- Append-only approval history
"""

__version__ = "0.1.0"
