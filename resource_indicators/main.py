"""
Command-line entry point: log in once, then print one access token per resource.
Configuration comes from RI_* environment variables (see config.py).
"""
import logging
import sys
from datetime import datetime, timezone

from resource_indicators import config
from resource_indicators.errors import ResourceIndicatorsError
from resource_indicators.flow import FlowConfig, FlowReport, ResourceIndicatorsFlow, ResourceTokens
from resource_indicators.keys import load_key_provider
from resource_indicators.models import ListenerConfig, ResourceSet

logger = logging.getLogger(__name__)


def build_flow_config() -> FlowConfig:
    """FlowConfig from the RI_* settings."""
    return FlowConfig(
        issuer=config.ISSUER,
        client_id=config.CLIENT_ID,
        scope=config.SCOPE,
        resources=ResourceSet(config.RESOURCES),
        listener=ListenerConfig(
            host=config.LOCAL_HOST,
            port=config.LOCAL_PORT,
            redirect_path=config.REDIRECT_PATH,
            start_path=config.START_PATH,
        ),
        callback_timeout=config.CALLBACK_TIMEOUT,
        http_timeout=config.HTTP_TIMEOUT,
        validate_issuer_name=config.VALIDATE_ISSUER_NAME,
    )


def _print_tokens(label: str, entry: ResourceTokens, out) -> None:
    expires_at = entry.tokens.expires_at
    if expires_at is None:
        expires = "(unknown)"
    else:
        expires = datetime.fromtimestamp(expires_at, tz=timezone.utc).isoformat(timespec="seconds")
    print(f"{label} request, resource: {entry.resource}", file=out)
    print(f"Access Token: {entry.tokens.access_token}", file=out)
    print(f"Refresh Token: {entry.tokens.refresh_token or '(none)'}", file=out)
    print(f"Expires: {expires}", file=out)
    print(file=out)


def print_report(report: FlowReport, out=None) -> None:
    out = out or sys.stdout
    _print_tokens("First", report.first, out)
    _print_tokens("Second", report.second, out)


def main() -> int:
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        flow = ResourceIndicatorsFlow(build_flow_config(), load_key_provider())
        report = flow.run()
    except (ResourceIndicatorsError, ValueError) as e:
        print("Error:", file=sys.stderr)
        print(f"{type(e).__name__}: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130
    print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
