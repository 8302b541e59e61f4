"""Register index templates with the search cluster.

A template is replaced in two requests, DELETE then PUT, on
``/_template/{domain}_{schema}``. The DELETE only clears a stale template and
its outcome is ignored; the PUT decides whether the run may go on to write
documents. The pair is not atomic: between the two calls the template is
absent, and two jobs on the same name end up last-writer-wins.
"""

import logging
from typing import Callable, Optional

from opensearchpy import OpenSearch
from opensearchpy.exceptions import ConnectionError as TransportConnectionError
from opensearchpy.exceptions import TransportError

from search_indexer.cluster import build_client
from search_indexer.errors import ConnectivityError, TemplateRejectedError
from search_indexer.settings import ClusterEndpoint

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}


def template_path(template_name: str) -> str:
    return f"/_template/{template_name}"


def _status_code(error: TransportError) -> Optional[int]:
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


class TemplateRegistrar:
    def __init__(
        self,
        endpoint: ClusterEndpoint,
        client: Optional[OpenSearch] = None,
        client_factory: Callable[[ClusterEndpoint], OpenSearch] = build_client,
    ) -> None:
        self.endpoint = endpoint
        self._client = client
        self._client_factory = client_factory

    @property
    def client(self) -> OpenSearch:
        if self._client is None:
            self._client = self._client_factory(self.endpoint)
        return self._client

    def template_url(self, template_name: str) -> str:
        return self.endpoint.url(template_path(template_name))

    def delete_template(self, template_name: str, content: str) -> None:
        """Clear any previous template under ``template_name``. Failures are ignored."""
        try:
            self.client.transport.perform_request(
                "DELETE",
                template_path(template_name),
                headers=JSON_HEADERS,
                body=content,
            )
            logger.debug(f"Deleted template {template_name}")
        except TransportError as e:
            status = _status_code(e)
            if status == 404:
                logger.debug(f"No previous template {template_name} to delete")
            else:
                logger.warning(f"Ignoring failure to delete template {template_name}: {e}")

    def put_template(self, template_name: str, content: str) -> None:
        """Create the template.

        Raises:
            TemplateRejectedError: The cluster answered outside 200-299.
            ConnectivityError: The cluster could not be reached.
        """
        try:
            self.client.transport.perform_request(
                "PUT",
                template_path(template_name),
                headers=JSON_HEADERS,
                body=content,
            )
        except TransportConnectionError as e:
            raise ConnectivityError(
                f"Unable to reach {self.template_url(template_name)}: {e}"
            ) from e
        except TransportError as e:
            raise TemplateRejectedError(template_name, _status_code(e), str(e)) from e

    def register(self, template_name: str, content: str) -> bool:
        """Replace the template. Returns False when the cluster rejects it.

        Connectivity failures on the PUT are raised.
        """
        logger.info(f"Registering template {template_name} -> {content}")
        self.delete_template(template_name, content)
        try:
            self.put_template(template_name, content)
        except TemplateRejectedError as e:
            logger.error(f"Failed to create template: {e}")
            return False
        logger.info(f"Template {template_name} registered at {self.template_url(template_name)}")
        return True
