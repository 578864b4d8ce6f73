"""Client for upload grants issued by the CDN gateway."""
from .client import GrantUploader, SignatureOrPolicyRejectedError, UploadError

__all__ = ["GrantUploader", "SignatureOrPolicyRejectedError", "UploadError"]
