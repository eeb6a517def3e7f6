"""Authenticated, decoded page requests.

PageFetcher performs exactly one logical request per call: obtain a token,
GET the endpoint through the retrying client, decode the generic envelope.
Decoding failures are terminal and never retried.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Generic, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import ValidationError

from enrollsync.lib.auth import TokenCache
from enrollsync.lib.cancellation import CancellationToken
from enrollsync.lib.client import ApiClient
from enrollsync.lib.errors import DecodeError
from enrollsync.lib.models import PageDescriptor, PageEnvelope

logger = logging.getLogger(__name__)

__all__ = ["PageFetcher", "PAGE_PARAM", "PAGE_SIZE_PARAM"]

R = TypeVar("R")

PAGE_PARAM = "currentPage"
PAGE_SIZE_PARAM = "pageSize"


class PageFetcher(Generic[R]):
    """Fetch and decode one page of ``record_type`` records.

    Example:
        fetcher = PageFetcher(api, tokens, Enrollment)
        records, page = fetcher.fetch_page(cancel, "/academico/matriculas", 0, 500,
                                           {"idPeriodoLetivo": "123"})
    """

    def __init__(
        self,
        client: ApiClient,
        tokens: TokenCache,
        record_type: Type[R],
    ) -> None:
        self.client = client
        self.tokens = tokens
        self.record_type = record_type
        self._envelope = PageEnvelope[record_type]  # type: ignore[valid-type]

    def fetch_page(
        self,
        cancel: CancellationToken,
        endpoint: str,
        page_index: int,
        page_size: int,
        filters: Mapping[str, str],
    ) -> Tuple[List[R], Optional[PageDescriptor]]:
        """Fetch page ``page_index`` of ``endpoint``.

        Returns:
            Tuple of (records, page descriptor). The descriptor is None when the
            response carries no pagination block.

        Raises:
            AuthError, Cancelled: Propagated unchanged from the token cache
            TransientError, TerminalHTTPError: From the request
            DecodeError: If the body does not match the envelope
        """
        params: Dict[str, Any] = {
            PAGE_PARAM: str(page_index),
            PAGE_SIZE_PARAM: str(page_size),
        }
        params.update(filters)
        envelope = self._get(cancel, endpoint, params, context=f"page {page_index}")
        return envelope.elements, envelope.page

    def fetch_elements(
        self,
        cancel: CancellationToken,
        endpoint: str,
        params: Mapping[str, str],
    ) -> List[R]:
        """Fetch a single unpaginated listing and return its elements."""
        envelope = self._get(cancel, endpoint, dict(params), context=endpoint)
        return envelope.elements

    def _get(
        self,
        cancel: CancellationToken,
        endpoint: str,
        params: Dict[str, Any],
        *,
        context: str,
    ) -> PageEnvelope[Any]:
        token = self.tokens.get_token(cancel)
        headers = {
            "Authorization": f"Bearer {token.value}",
            "Content-Type": "application/json",
        }
        response = self.client.request("GET", endpoint, cancel, headers=headers, params=params)
        try:
            return self._envelope.model_validate_json(response.content)
        except ValidationError as exc:
            raise DecodeError(
                f"error parsing API response for {context}",
                details={"endpoint": endpoint, "errors": exc.error_count()},
            ) from exc
