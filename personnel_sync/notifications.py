"""
Email alerts for Personnel Sync.

Failures to deliver an alert are logged and reported through the return
value; they never interrupt a sync run.
"""

import smtplib
import logging
from email.message import EmailMessage
from typing import Dict, List, Any, Optional, Tuple
from datetime import datetime

logger = logging.getLogger(__name__)

MAX_ERRORS_IN_EMAIL = 10
SIGNATURE = "This is an automated message from Personnel Sync."


def _recipients(config: Dict[str, Any]) -> List[str]:
    email_to = config.get('email_to') or []
    return [email_to] if isinstance(email_to, str) else list(email_to)


def _format_runtime(seconds: float) -> str:
    if seconds > 60:
        return f"{int(seconds // 60)}m {seconds % 60:.1f}s"
    return f"{seconds:.2f} seconds"


def _report(title: str, *sections: Tuple[Optional[str], List[str]]) -> str:
    """Lay out a plain text report: a title, a timestamp and indented sections."""
    lines = [title, f"Timestamp: {datetime.now():%Y-%m-%d %H:%M:%S}", ""]
    for heading, body in sections:
        if heading:
            lines.append(heading)
        lines.extend(body)
        lines.append("")
    lines.append(SIGNATURE)
    return '\n'.join(lines)


def send_email(subject: str, body: str, config: Dict[str, Any]) -> bool:
    """
    Send an email through the configured SMTP server.

    Port 465 uses implicit TLS; any other port uses STARTTLS unless
    smtp_tls is false.

    Returns:
        True if the message was handed to the server
    """
    if not config.get('enable_email', True):
        logger.debug("Email notifications disabled")
        return False

    smtp_server = config.get('smtp_server')
    recipients = _recipients(config)
    if not smtp_server:
        logger.error("SMTP server not configured")
        return False
    if not recipients:
        logger.error("No email recipients configured")
        return False

    smtp_port = config.get('smtp_port', 587)
    username = config.get('smtp_username')
    password = config.get('smtp_password')
    sender = config.get('email_from', username)

    message = EmailMessage()
    message['From'] = sender
    message['To'] = ', '.join(recipients)
    message['Subject'] = subject
    message.set_content(body)

    logger.debug(f"Sending '{subject}' to {len(recipients)} recipient(s) via {smtp_server}:{smtp_port}")

    try:
        if smtp_port == 465:
            server = smtplib.SMTP_SSL(smtp_server, smtp_port)
        else:
            server = smtplib.SMTP(smtp_server, smtp_port)
            if config.get('smtp_tls', True):
                server.starttls()

        if username and password:
            server.login(username, password)
        server.sendmail(sender, recipients, message.as_string())
        server.quit()
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email notification '{subject}': {e}")
        return False

    logger.info(f"Email notification sent: {subject}")
    return True


def send_failure_notification(title: str, error_message: str, config: Dict[str, Any],
                              additional_info: Optional[Dict[str, Any]] = None) -> bool:
    """Alert that a run could not complete at all."""
    if not config.get('email_on_failure', True):
        logger.debug("Failure email notifications disabled")
        return False

    sections = [(None, [f"Failure Type: {title}", f"Error Message: {error_message}"])]
    if additional_info:
        sections.append(("Additional Information:",
                         [f"  {key}: {value}" for key, value in additional_info.items()]))
    sections.append((None, ["Please check the application logs for more detailed information."]))

    body = _report("Personnel Sync Failure Report", *sections)
    return send_email(f"Personnel Sync Alert: {title}", body, config)


def send_sync_errors_notification(set_errors: Dict[str, List[str]], config: Dict[str, Any]) -> bool:
    """
    Alert with the errors each sync set reported during a run.

    At most MAX_ERRORS_IN_EMAIL errors are listed per set.
    """
    if not config.get('email_on_failure', True):
        logger.debug("Failure email notifications disabled")
        return False

    total = sum(len(errors) for errors in set_errors.values())
    sections = [(None, [f"Sync sets with errors: {len(set_errors)}", f"Total errors: {total}"])]

    for set_name, errors in set_errors.items():
        listed = [f"  {i}. {error}" for i, error in enumerate(errors[:MAX_ERRORS_IN_EMAIL], 1)]
        if len(errors) > MAX_ERRORS_IN_EMAIL:
            listed.append(f"  ... and {len(errors) - MAX_ERRORS_IN_EMAIL} more errors")
        sections.append((f"{set_name or 'default'}:", listed))

    sections.append((None, ["Check the application logs for complete error details."]))

    body = _report("Personnel Sync Error Report", *sections)
    return send_email("Personnel Sync Alert: Sync Errors", body, config)


def send_success_summary(sync_stats: Dict[str, Any], config: Dict[str, Any]) -> bool:
    """
    Send the run summary after a successful run, if email_on_success is set.

    sync_stats holds runtime_seconds, dry_run, totals (a ChangeResults
    dict) and sets (ChangeResults dicts keyed by sync set name).
    """
    if not config.get('email_on_success', False):
        logger.debug("Success email notifications disabled")
        return False

    totals = sync_stats.get('totals', {})
    sets = sync_stats.get('sets', {})
    mode = " (dry run)" if sync_stats.get('dry_run') else ""

    sections = [
        (f"Sync completed successfully{mode}!", []),
        ("Overall Statistics:", [
            f"  Total runtime: {_format_runtime(sync_stats.get('runtime_seconds', 0))}",
            f"  Sync sets processed: {len(sets)}",
            f"  People created: {totals.get('created', 0)}",
            f"  People updated: {totals.get('updated', 0)}",
            f"  People deleted: {totals.get('deleted', 0)}",
        ]),
    ]
    if sets:
        details = []
        for set_name, set_stats in sets.items():
            details.append(f"  {set_name or 'default'}:")
            details.extend(f"    {counter.capitalize()}: {set_stats.get(counter, 0)}"
                           for counter in ('created', 'updated', 'deleted'))
        sections.append(("Sync Set Details:", details))

    body = _report("Personnel Sync Summary Report", *sections)
    return send_email("Personnel Sync: Successful Completion", body, config)


def test_notification_config(config: Dict[str, Any]) -> bool:
    """Send a test message to check the SMTP settings end to end."""
    body = _report("This is a test email from Personnel Sync.", (
        "If you receive this message, email notifications are configured correctly.", [
            f"- SMTP Server: {config.get('smtp_server', 'not configured')}",
            f"- SMTP Port: {config.get('smtp_port', 'not configured')}",
            f"- From Address: {config.get('email_from', 'not configured')}",
            f"- Recipients: {', '.join(_recipients(config))}",
        ]
    ))

    result = send_email("Personnel Sync: Configuration Test", body, config)
    if result:
        logger.info("Test notification sent successfully")
    else:
        logger.error("Test notification failed")
    return result
