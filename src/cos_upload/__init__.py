"""cos-upload: upload files to Tencent Cloud Object Storage.

Small files go up in one signed PUT; files larger than 5 MiB use the
multipart protocol. Objects can also be inspected (HEAD) and deleted::

    async with Uploader(CosConfig.from_env()) as uploader:
        url = await uploader.upload_file(
            "report.pdf", "uploads/user_123/report.pdf", {"user-id": "123"}
        )
"""

from cos_upload.config import CosConfig, load_config
from cos_upload.errors import CosError
from cos_upload.uploader import Uploader

__version__ = "0.1.0"

__all__ = ["CosConfig", "CosError", "Uploader", "load_config"]
