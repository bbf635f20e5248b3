"""Shared data types for VLM modules."""

import base64
from dataclasses import dataclass


@dataclass
class PageImage:
    """One rasterized page, ready to send to a vision model."""

    page_number: int  # 1-based
    data: bytes
    media_type: str  # "image/jpeg", "image/png", ...

    @property
    def b64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")
