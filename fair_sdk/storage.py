"""
Permanent-storage upload service.

Uploading is how prompts reach the ledger: the returned transaction id
becomes the inference request id that payments and responses point at.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Sequence, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import default_timeout, validate_service_url
from .exceptions import UploadError
from .gateway.stub_transport import InMemoryLedger
from .models import Tag
from .wallet import Wallet, b64url_encode

logger = logging.getLogger(__name__)

Payload = Union[str, bytes]


def _as_bytes(payload: Payload) -> bytes:
    return payload.encode("utf-8") if isinstance(payload, str) else payload


class StorageUploader(ABC):
    """Uploads a payload with tags and returns its transaction id"""

    @abstractmethod
    def upload(self, payload: Payload, tags: Sequence[Tag]) -> str:
        """
        Upload ``payload`` with ``tags``.

        Returns:
            Transaction id of the stored item

        Raises:
            UploadError: If the service does not return an id
        """
        pass


class HttpUploader(StorageUploader):
    """
    Uploads wallet-signed data items to a bundling service.

    The body is JSON: base64url data, tags, owner address and the wallet's
    signature. The service answers with ``{"id": ...}``.
    """

    def __init__(self, upload_url: str, wallet: Wallet, timeout: Optional[float] = None, retry_count: int = 3):
        self.upload_url = validate_service_url("Upload URL", upload_url)
        self.wallet = wallet
        self.timeout = timeout if timeout is not None else default_timeout()
        self.session = requests.Session()
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[502, 503, 504],
            allowed_methods=["POST"],
            raise_on_status=False,
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

    def upload(self, payload: Payload, tags: Sequence[Tag]) -> str:
        data = _as_bytes(payload)
        signature = self.wallet.sign_data_item(data, tags)
        body = {
            "data": b64url_encode(data),
            "tags": [{"name": t.name, "value": t.value} for t in tags],
            "owner": self.wallet.address,
            "signature": b64url_encode(signature),
        }
        try:
            response = self.session.post(f"{self.upload_url}/tx", json=body, timeout=self.timeout)
            response.raise_for_status()
            result = response.json()
        except requests.RequestException as e:
            logger.error(f"Upload request failed: {e}")
            raise UploadError(f"Upload failed: {e}")
        except ValueError as e:
            raise UploadError(f"Invalid JSON response from upload service: {e}")

        tx_id = result.get("id") if isinstance(result, dict) else None
        if not tx_id:
            raise UploadError(f"Upload service returned no transaction id: {result}")
        logger.info(f"Uploaded {len(data)} bytes as {tx_id}")
        return tx_id


class InMemoryUploader(StorageUploader):
    """Publishes uploads straight into an InMemoryLedger"""

    def __init__(self, ledger: InMemoryLedger, owner: str):
        self.ledger = ledger
        self.owner = owner
        self.payloads: Dict[str, bytes] = {}

    def upload(self, payload: Payload, tags: Sequence[Tag]) -> str:
        entry = self.ledger.publish(self.owner, tags)
        self.payloads[entry.id] = _as_bytes(payload)
        return entry.id

    def read(self, tx_id: str) -> Optional[str]:
        raw = self.payloads.get(tx_id)
        return raw.decode("utf-8") if raw is not None else None
