"""
Python client for upload grants: PUT with the grant's required headers, or multipart POST with its form fields.
Retries transport errors and 5xx with exponential backoff; signature or policy mismatches are not retried.
"""
import mimetypes
import time
from pathlib import Path

import httpx

# Backend error codes meaning the request did not match what the grant signed
_REJECTION_CODES = ("SignatureDoesNotMatch", "AccessDenied", "InvalidPolicyDocument", "EntityTooSmall", "EntityTooLarge")


class UploadError(Exception):
    """Upload failed after retries."""


class SignatureOrPolicyRejectedError(UploadError):
    """Headers or form fields did not match the issued grant. Request a new grant."""


class GrantUploader:
    """Performs the client side of an upload grant ({uploadURL, requiredHeaders, formFields?})."""

    def __init__(self, timeout: float = 60.0, max_retries: int = 5, session: httpx.Client | None = None):
        self.timeout = timeout
        self.max_retries = max_retries
        self._session = session

    def _get_session(self) -> httpx.Client:
        if self._session is None:
            self._session = httpx.Client(timeout=self.timeout, follow_redirects=True)
        return self._session

    def upload(self, grant: dict, path: str | Path, content_type: str | None = None) -> None:
        """Upload one local file under grant. The file size must equal the size the grant was issued for."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(path)
        body = path.read_bytes()
        upload_url = grant["uploadURL"]
        form_fields = grant.get("formFields")
        if content_type is None:
            content_type = mimetypes.guess_type(str(path))[0] or "application/octet-stream"
        if form_fields:
            self._send_with_retry(
                lambda: self._get_session().post(
                    upload_url,
                    data=dict(form_fields),
                    # file must be the last form part
                    files={"file": (path.name, body, content_type)},
                )
            )
            return
        headers = dict(grant.get("requiredHeaders") or {})
        declared = headers.get("content-length")
        if declared is not None and int(declared) != len(body):
            raise ValueError(f"File size {len(body)} does not match grant size {declared}")
        self._send_with_retry(lambda: self._get_session().put(upload_url, content=body, headers=headers))

    def _send_with_retry(self, send) -> httpx.Response:
        last_err: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                r = send()
            except httpx.TransportError as e:
                last_err = e
            else:
                if r.status_code in (400, 403) and _is_rejection(r.text):
                    raise SignatureOrPolicyRejectedError(
                        f"Upload rejected ({r.status_code}): headers or fields do not match the grant"
                    )
                if r.status_code < 500 and r.status_code != 429:
                    r.raise_for_status()
                    return r
                last_err = httpx.HTTPStatusError(f"Server error {r.status_code}", request=r.request, response=r)
            if attempt == self.max_retries - 1:
                break
            backoff = (2**attempt) + (time.time() % 1)  # exponential backoff + jitter
            time.sleep(backoff)
        raise UploadError(f"Upload failed after {self.max_retries} attempts: {last_err}") from last_err

    def close(self) -> None:
        if self._session:
            self._session.close()
            self._session = None

    def __enter__(self) -> "GrantUploader":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def _is_rejection(text: str) -> bool:
    return any(code in (text or "") for code in _REJECTION_CODES)
