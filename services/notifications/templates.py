"""HTML email templates for invoice notifications.

One template per notification tag, rendered with Jinja2 autoescaping so
values taken from extracted invoices (customer names, addresses, notes)
cannot inject markup into outgoing mail. Subjects are plain text.
"""

from enum import Enum
from typing import TYPE_CHECKING, Any, NamedTuple

from jinja2 import DictLoader, Environment, StrictUndefined

if TYPE_CHECKING:
    from services.workflow.models import Invoice


class NotificationTag(str, Enum):
    """Notification kinds, one template each."""

    PENDING = "pending"
    APPROVED = "approved"
    FLAGGED_INSUFFICIENT = "flagged-insufficient"
    DELAYED_DELIVERY = "delayed-delivery"
    FLAGGED_MISSING_SKU = "flagged-missing-sku"
    REJECTED = "rejected"
    STATUS_CHANGED = "status-changed"
    SUPPLIER_ORDER = "supplier-order"


class RenderedEmail(NamedTuple):
    subject: str
    html: str


_BASE = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #2c3e50; text-align: center; padding: 20px 0;">{% block heading %}{% endblock %}</h2>
  <div style="background-color: #f8f9fa; padding: 20px; border-radius: 5px;">
    {% block body %}{% endblock %}
  </div>
  <p style="color: #7f8c8d; font-size: 12px; text-align: center; margin-top: 20px;">
    {% block footer %}This is an automated message from {{ company_name }}. Please do not reply to this email.{% endblock %}
  </p>
</div>
"""

_SUMMARY = """\
<ul style="list-style: none; padding: 0;">
  <li><strong>Invoice Number:</strong> {{ invoice_number }}</li>
  <li><strong>Amount:</strong> ${{ amount }}</li>
  {% if status_label %}<li><strong>Status:</strong> <span style="color: {{ status_color }};">{{ status_label }}</span></li>{% endif %}
</ul>
"""

_TEMPLATES = {
    "base.html": _BASE,
    "summary.html": _SUMMARY,
    NotificationTag.PENDING.value: """\
{% extends "base.html" %}
{% block heading %}Invoice Review Required{% endblock %}
{% block body %}
<p>Hello,</p>
<p>An invoice requires your attention:</p>
{% with status_label="Pending Review", status_color="#f39c12" %}{% include "summary.html" %}{% endwith %}
<p><strong>Confidence Score:</strong> {{ confidence_score }}%</p>
<p>This invoice has been marked for review due to low confidence score.</p>
<p style="text-align: center;"><a href="{{ app_url }}/dashboard/pending">Review Invoice</a></p>
{% endblock %}
""",
    NotificationTag.FLAGGED_INSUFFICIENT.value: """\
{% extends "base.html" %}
{% block heading %}Inventory Issue Detected{% endblock %}
{% block body %}
<p>Hello,</p>
<p>An invoice has been flagged due to inventory issues:</p>
{% with status_label="Flagged", status_color="#e74c3c" %}{% include "summary.html" %}{% endwith %}
<p><strong>Issue:</strong> Insufficient inventory for one or more items</p>
{% if shortfalls %}
<table style="width: 100%; border-collapse: collapse;">
  <tr><th>SKU</th><th>Requested</th><th>On Hand</th><th>Gap</th><th>Impact</th></tr>
  {% for s in shortfalls %}
  <tr><td>{{ s.sku }}</td><td>{{ s.requested }}</td><td>{{ s.on_hand }}</td><td>{{ s.gap }}</td><td>{{ s.impact.value }}</td></tr>
  {% endfor %}
</table>
{% endif %}
<p>This invoice requires your immediate attention to resolve inventory discrepancies.</p>
<p style="text-align: center;"><a href="{{ app_url }}/dashboard/gap">Review Invoice</a></p>
{% endblock %}
""",
    NotificationTag.APPROVED.value: """\
{% extends "base.html" %}
{% block heading %}Order Confirmation{% endblock %}
{% block body %}
<p>Dear {{ customer_name }},</p>
<p>Thank you for your order. We're pleased to confirm that your invoice has been processed successfully.</p>
{% with status_label="Approved", status_color="#27ae60" %}{% include "summary.html" %}{% endwith %}
<p><strong>Delivery Information</strong></p>
<p>Your order will be delivered within 3-5 business days.</p>
<p>Delivery Address:<br>{{ shipping_address }}</p>
<p>If you have any questions about your order, please don't hesitate to contact us.</p>
{% endblock %}
""",
    NotificationTag.DELAYED_DELIVERY.value: """\
{% extends "base.html" %}
{% block heading %}Order Delivery Update{% endblock %}
{% block body %}
<p>Dear {{ customer_name }},</p>
<p>Thank you for your order. We want to inform you about an important update regarding your recent purchase.</p>
{% include "summary.html" %}
<p><strong>Delivery Update</strong></p>
<p>Due to high demand, some items in your order are currently being restocked.
Your order will be delivered within 10-14 business days.</p>
<p>Delivery Address:<br>{{ shipping_address }}</p>
<p>We apologize for any inconvenience and are working to fulfill your order as quickly as possible.</p>
{% endblock %}
""",
    NotificationTag.FLAGGED_MISSING_SKU.value: """\
{% extends "base.html" %}
{% block heading %}Order Update Required{% endblock %}
{% block body %}
<p>Dear {{ customer_name }},</p>
<p>We regret to inform you that we are unable to process your order at this time.</p>
{% include "summary.html" %}
<p><strong>Item Unavailable</strong></p>
<p>The following items in your order are not available in our catalog:</p>
<ul>
  {% for line in missing %}<li>Item SKU: {{ line.sku }} (Quantity Requested: {{ line.quantity }})</li>{% endfor %}
</ul>
<p>We recommend:</p>
<ol>
  <li>Reviewing your order details</li>
  <li>Checking the SKU number for accuracy</li>
  <li>Contacting our support team for assistance</li>
</ol>
{% endblock %}
""",
    NotificationTag.REJECTED.value: """\
{% extends "base.html" %}
{% block heading %}Order Could Not Be Processed{% endblock %}
{% block body %}
<p>Dear {{ customer_name }},</p>
<p>We regret to inform you that your invoice has been rejected after review.</p>
{% with status_label="Rejected", status_color="#c0392b" %}{% include "summary.html" %}{% endwith %}
<p>Please contact our support team if you believe this is an error.</p>
{% endblock %}
""",
    NotificationTag.STATUS_CHANGED.value: """\
{% extends "base.html" %}
{% block heading %}Invoice Status Update{% endblock %}
{% block body %}
<p>Dear {{ customer_name }},</p>
<p>The status of your invoice has been updated.</p>
{% with status_color="#2c3e50" %}{% include "summary.html" %}{% endwith %}
{% if status_label == "Approved" %}
<p>Your order will be delivered within 3-5 business days.</p>
<p>Delivery Address:<br>{{ shipping_address }}</p>
{% endif %}
{% endblock %}
""",
    NotificationTag.SUPPLIER_ORDER.value: """\
{% extends "base.html" %}
{% block heading %}Purchase Order Request{% endblock %}
{% block body %}
<p>Dear Supplier,</p>
<p>We would like to place an order for the following items:</p>
<table style="width: 100%; border-collapse: collapse; margin-top: 20px;">
  <tr><th>SKU Code</th><th>Item Name</th><th>Quantity</th><th>Specifications</th></tr>
  {% for line in lines %}
  <tr><td>{{ line.code }}</td><td>{{ line.name }}</td><td>{{ line.quantity }}</td><td>{{ line.specifications or "-" }}</td></tr>
  {% endfor %}
</table>
{% if notes %}<p><strong>Additional Notes:</strong><br>{{ notes }}</p>{% endif %}
<p>Please confirm the availability and provide a quotation for the above items.</p>
<p>Best regards,<br>{{ requester_name or "Purchasing Team" }}<br>{% if requester_email %}Email: {{ requester_email }}{% endif %}</p>
{% endblock %}
{% block footer %}This is an automated message from {{ company_name }}. Please reply to this email with your quotation.{% endblock %}
""",
}

_SUBJECTS = {
    NotificationTag.PENDING: "[{company}] Pending Invoice Review Required",
    NotificationTag.FLAGGED_INSUFFICIENT: "[{company}] Flagged Invoice - Inventory Issue",
    NotificationTag.APPROVED: "[{company}] Order Confirmation - Invoice #{number}",
    NotificationTag.DELAYED_DELIVERY: (
        "[{company}] Important: Order Delivery Update - Invoice #{number}"
    ),
    NotificationTag.FLAGGED_MISSING_SKU: "[{company}] Important: Order Update - Unavailable Item",
    NotificationTag.REJECTED: "[{company}] Invoice #{number} Rejected",
    NotificationTag.STATUS_CHANGED: "[{company}] Invoice #{number} Status Update: {status}",
    NotificationTag.SUPPLIER_ORDER: "[{company}] Purchase Order Request",
}

_env = Environment(loader=DictLoader(_TEMPLATES), autoescape=True, undefined=StrictUndefined)


def invoice_context(invoice: "Invoice") -> dict[str, Any]:
    """Template variables for an invoice, with display fallbacks for missing fields."""
    customer = invoice.customer_details
    return {
        "invoice_number": invoice.invoice_number or "N/A",
        "amount": f"{invoice.amount:.2f}" if invoice.amount is not None else "0.00",
        "confidence_score": invoice.confidence_score,
        "customer_name": customer.name or "Valued Customer",
        "shipping_address": customer.shipping_address or "Address not provided",
        "status_label": invoice.invoice_status.value,
        "status_color": "#2c3e50",
    }


def render(
    tag: NotificationTag,
    company_name: str,
    app_url: str,
    invoice: "Invoice | None" = None,
    **context: Any,
) -> RenderedEmail:
    """Render subject and HTML body for a notification.

    Args:
        tag: Notification kind
        company_name: Shown in subject and footer
        app_url: Dashboard base URL for review links
        invoice: Invoice the notification is about (not needed for supplier orders)
        **context: Extra template variables (shortfalls, missing, lines, notes, ...)

    Returns:
        Rendered subject and HTML body
    """
    variables: dict[str, Any] = {
        "company_name": company_name,
        "app_url": app_url.rstrip("/"),
        "shortfalls": [],
        "missing": [],
        "lines": [],
        "notes": None,
        "requester_name": None,
        "requester_email": None,
    }
    if invoice is not None:
        variables.update(invoice_context(invoice))
    variables.update(context)

    html = _env.get_template(tag.value).render(**variables)
    subject = _SUBJECTS[tag].format(
        company=company_name,
        number=variables.get("invoice_number", "N/A"),
        status=variables.get("status_label", ""),
    )
    return RenderedEmail(subject=subject, html=html)
