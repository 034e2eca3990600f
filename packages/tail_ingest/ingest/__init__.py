from .utils import UploadKind, detect_upload_kind, extract_upload, is_supported_upload_file

__all__ = ["UploadKind", "detect_upload_kind", "extract_upload", "is_supported_upload_file"]
