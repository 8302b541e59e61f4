from opensearchpy import OpenSearch

from search_indexer.settings import ClusterEndpoint


def build_client(endpoint: ClusterEndpoint) -> OpenSearch:
    """Client for ``endpoint``. Requests are never retried."""
    return OpenSearch(
        hosts=[{"host": endpoint.host, "port": endpoint.port}],
        use_ssl=endpoint.ssl,
        verify_certs=endpoint.verify_certs,
        ssl_show_warn=False,
        http_auth=endpoint.auth,
        timeout=endpoint.timeout,
        max_retries=0,
        retry_on_timeout=False,
    )
