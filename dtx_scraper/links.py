"""File-host link handling: Google Drive and OneDrive share links to direct downloads."""

import base64
import re
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .errors import UnsupportedLinkError

DRIVE_DOWNLOAD_URL = "https://drive.google.com/uc?export=download&id={}"
ONEDRIVE_SHARE_URL = "https://api.onedrive.com/v1.0/shares/{}/root/content"

DRIVE_FILE_PATH = re.compile(r"drive\.google\.com/file/d/([\w-]+)", re.I)
DRIVE_ID_PARAM = re.compile(r"drive\.google\.com/(?:uc|open)\?(?:[^#]*&)?id=([\w-]+)", re.I)

FOLDER_PATTERNS = (
    re.compile(r"drive\.google\.com/drive/(?:u/\d+/)?folders/", re.I),
    re.compile(r"1drv\.ms/f/", re.I),
    re.compile(r"onedrive\.live\.com/\?(?:[^#]*&)?id=", re.I),
)


def is_folder_link(url: str) -> bool:
    return any(p.search(url) for p in FOLDER_PATTERNS)


def drive_file_id(url: str) -> Optional[str]:
    m = DRIVE_FILE_PATH.search(url) or DRIVE_ID_PARAM.search(url)
    return m.group(1) if m else None


def drive_download_url(file_id: str) -> str:
    if not file_id:
        raise ValueError("No Google Drive file id")
    return DRIVE_DOWNLOAD_URL.format(file_id)


def onedrive_download_url(share_url: str) -> str:
    """Shares API URL for a 1drv.ms link (``u!`` + unpadded base64url of the link)."""
    encoded = base64.urlsafe_b64encode(share_url.encode("utf-8")).decode("ascii").rstrip("=")
    return ONEDRIVE_SHARE_URL.format(f"u!{encoded}")


def resolve_download_url(url: str) -> str:
    """Turn a share link into one that serves the file bytes.

    Raises UnsupportedLinkError for folders and unknown hosts.
    """
    if is_folder_link(url):
        raise UnsupportedLinkError(f"Folder links cannot be downloaded: {url}")

    lowered = url.lower()
    if "drive.google.com" in lowered:
        file_id = drive_file_id(url)
        if not file_id:
            raise UnsupportedLinkError(f"Invalid Google Drive URL: {url}")
        return drive_download_url(file_id)
    if "1drv.ms/" in lowered:
        return onedrive_download_url(url)
    if "onedrive.live.com/download" in lowered or "api.onedrive.com/" in lowered:
        return url
    raise UnsupportedLinkError(f"Unsupported file host: {url}")


@dataclass
class ConfirmForm:
    """Google Drive's "can't scan this file for viruses" form."""

    action: str
    method: str = "GET"
    fields: Dict[str, str] = field(default_factory=dict)


def parse_confirm_form(html: str, page_url: str = "") -> Optional[ConfirmForm]:
    soup = BeautifulSoup(html, "html.parser")
    form = soup.select_one("form#download-form")
    if form is None or not form.get("action"):
        return None

    fields = {}
    for inp in form.find_all("input"):
        name = inp.get("name")
        if name and inp.get("value") is not None:
            fields[name] = inp["value"]

    return ConfirmForm(
        action=urljoin(page_url, form["action"]),
        method=(form.get("method") or "GET").upper(),
        fields=fields,
    )
