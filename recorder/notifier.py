import logging
import os

import requests

logger = logging.getLogger("Notifier")


def format_failures(report) -> str:
    lines = [f"⚠️ **SATURATION RUN**: {len(report.failures)} of {len(report.outcomes)} realms failed"]
    for outcome in report.failures:
        lines.append(f"• realm {outcome.realm_id} ({outcome.path}): {outcome.detail}")
    return "\n".join(lines)


def send_failure_alert(report, webhook_url: str = None, platform: str = None) -> bool:
    """
    Posts the failed realms of a run to a Discord or Telegram style webhook.
    Without a webhook it only logs. Never raises on transport errors.
    """
    if webhook_url is None:
        webhook_url = os.getenv("ALERT_WEBHOOK_URL", "")
    if platform is None:
        platform = os.getenv("ALERT_PLATFORM", "DISCORD")

    message = format_failures(report)
    if not webhook_url:
        logger.warning(f"{message} (no webhook configured)")
        return False

    if platform.upper() == "TELEGRAM":
        payload = {"text": message}
    else:
        payload = {"content": message}

    try:
        response = requests.post(webhook_url, json=payload, timeout=5)
    except requests.RequestException as e:
        logger.error(f"Alert Transport Error: {e}")
        return False

    if response.status_code not in [200, 204]:
        logger.error(f"Failed to send alert: {response.status_code} - {response.text}")
        return False
    logger.info(f"Alert sent for {len(report.failures)} failed realms")
    return True
