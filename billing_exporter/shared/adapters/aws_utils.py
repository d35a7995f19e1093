import aioboto3
from typing import Any, Dict, Optional
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from billing_exporter.shared.core.exceptions import AdapterError

# Standardized boto config with timeouts to prevent indefinite hangs
DEFAULT_BOTO_CONFIG = BotoConfig(
    read_timeout=30,
    connect_timeout=10,
    retries={"max_attempts": 3, "mode": "adaptive"}
)

AWS_ERRORS = (BotoCoreError, ClientError)


def get_boto_session() -> aioboto3.Session:
    """Returns a centralized aioboto3 session."""
    return aioboto3.Session()


def client_kwargs(
    service_name: str,
    region: Optional[str] = None,
    endpoint_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Keyword arguments for session.client().
    endpoint_url points the client at a MotoServer/LocalStack instance.
    """
    kwargs: Dict[str, Any] = {
        "service_name": service_name,
        "config": DEFAULT_BOTO_CONFIG
    }
    if region:
        kwargs["region_name"] = region
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
    return kwargs


async def get_caller_account_id(
    session: Optional[aioboto3.Session] = None,
    region: Optional[str] = None,
    endpoint_url: Optional[str] = None,
) -> str:
    """Account id of the credentials in use (STS GetCallerIdentity)."""
    session = session or get_boto_session()
    try:
        async with session.client(**client_kwargs("sts", region, endpoint_url)) as sts:
            identity = await sts.get_caller_identity()
    except AWS_ERRORS as e:
        raise AdapterError(f"Failed to determine the caller account: {e}") from e
    return identity["Account"]
