from .engine import ApprovalResult, approve_author_request, reject_author_request

__all__ = ["ApprovalResult", "approve_author_request", "reject_author_request"]
