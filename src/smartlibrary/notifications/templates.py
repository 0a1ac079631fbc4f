"""Email templates for every notification kind.

Bodies are Jinja2 templates sharing one base layout. Subjects are rendered
without HTML escaping since they go into a mail header.
"""

from dataclasses import dataclass
from typing import Any

from jinja2 import DictLoader, Environment, StrictUndefined

from ..db.schemas import NotificationKind

BASE_TEMPLATE = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>{{ subject }}</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: #f5f5f5; padding: 24px;">
    <div style="max-width: 600px; margin: 0 auto; background: white; border-radius: 8px; padding: 32px;">
        <h1 style="color: #1a1a2e; font-size: 22px;">Smart Library</h1>
        <p>Hi {{ full_name }},</p>
        {% block content %}{% endblock %}
        <p style="color: #666; font-size: 13px; margin-top: 32px;">
            Happy reading,<br>The Smart Library Team
        </p>
    </div>
</body>
</html>
"""

BODY_TEMPLATES = {
    NotificationKind.WELCOME: """
{% extends "base.html" %}
{% block content %}
<p>Welcome to Smart Library! Your account has been created and is waiting for
approval by a librarian. We will email you as soon as it is reviewed.</p>
{% endblock %}
""",
    NotificationKind.ACCOUNT_APPROVAL: """
{% extends "base.html" %}
{% block content %}
<p>Great news! Your account has been approved. You can now browse the
catalogue and borrow books.</p>
<p><a href="{{ library_url }}">Start exploring</a></p>
{% endblock %}
""",
    NotificationKind.ACCOUNT_REJECTION: """
{% extends "base.html" %}
{% block content %}
<p>Unfortunately we could not approve your account registration at this time.
Please contact the library staff if you believe this is a mistake.</p>
{% endblock %}
""",
    NotificationKind.BORROW_CONFIRMATION: """
{% extends "base.html" %}
{% block content %}
<p>You have borrowed <strong>{{ book_title }}</strong> by {{ book_author }}.</p>
<ul>
    <li>Borrowed on: {{ borrow_date }}</li>
    <li>Due date: <strong>{{ due_date }}</strong></li>
</ul>
<p>Please return it on time to avoid late penalties.</p>
{% endblock %}
""",
    NotificationKind.DUE_REMINDER: """
{% extends "base.html" %}
{% block content %}
<p>This is a friendly reminder that <strong>{{ book_title }}</strong> is due
tomorrow ({{ due_date }}).</p>
<p>Please return it on time to avoid late penalties.</p>
{% endblock %}
""",
    NotificationKind.DUE_TODAY: """
{% extends "base.html" %}
{% block content %}
<p><strong>{{ book_title }}</strong> is due <strong>today</strong>
({{ due_date }}).</p>
<p>Return it before the library closes to avoid a late penalty.</p>
{% endblock %}
""",
    NotificationKind.OVERDUE_NOTICE: """
{% extends "base.html" %}
{% block content %}
<p><strong>{{ book_title }}</strong> was due on {{ due_date }} and is now
{{ days_overdue }} day{{ "s" if days_overdue != 1 else "" }} overdue.</p>
<p>Current penalty: <strong>${{ "%.2f"|format(penalty_amount) }}</strong>.
The penalty grows every day the book is not returned.</p>
<p>Please return it immediately.</p>
{% endblock %}
""",
    NotificationKind.RETURN_CONFIRMATION: """
{% extends "base.html" %}
{% block content %}
<p>Thanks for returning <strong>{{ book_title }}</strong> on {{ return_date }}.</p>
<p>We hope you enjoyed it. Your next read is waiting on the shelves.</p>
{% endblock %}
""",
    NotificationKind.USER_INACTIVE: """
{% extends "base.html" %}
{% block content %}
<p>We have not seen you in a while. New books have arrived since your last
visit.</p>
<p><a href="{{ library_url }}">Come back and explore</a></p>
{% endblock %}
""",
    NotificationKind.USER_ACTIVE: """
{% extends "base.html" %}
{% block content %}
<p>Welcome back! Keep the streak going and pick your next book.</p>
{% endblock %}
""",
}

SUBJECT_TEMPLATES = {
    NotificationKind.WELCOME: "Welcome to Smart Library! 👋 Your reading journey begins now",
    NotificationKind.ACCOUNT_APPROVAL: "🎉 Your Smart Library account has been approved!",
    NotificationKind.ACCOUNT_REJECTION: "Smart Library Account Registration Update",
    NotificationKind.BORROW_CONFIRMATION: "📚 Book Borrowed: {{ book_title }}",
    NotificationKind.DUE_REMINDER: '⏰ Reminder: "{{ book_title }}" is due tomorrow!',
    NotificationKind.DUE_TODAY: '🚨 URGENT: "{{ book_title }}" is due TODAY!',
    NotificationKind.OVERDUE_NOTICE: "⚠️ OVERDUE: {{ book_title }} - Immediate Return Required",
    NotificationKind.RETURN_CONFIRMATION: "📚 Book Returned Successfully: {{ book_title }}",
    NotificationKind.USER_INACTIVE: "We miss you!",
    NotificationKind.USER_ACTIVE: "You’re back! 🔥",
}


@dataclass
class RenderedMessage:
    """A rendered email ready for the delivery channel."""

    subject: str
    html: str


_html_env = Environment(
    loader=DictLoader(
        {"base.html": BASE_TEMPLATE}
        | {f"{kind.value.lower()}.html": body for kind, body in BODY_TEMPLATES.items()}
    ),
    autoescape=True,
    undefined=StrictUndefined,
)
_subject_env = Environment(autoescape=False, undefined=StrictUndefined)


def render(kind: NotificationKind, context: dict[str, Any]) -> RenderedMessage:
    """Render the subject and HTML body for a notification.

    Args:
        kind: Notification kind
        context: Template variables (``full_name`` is always required)

    Returns:
        RenderedMessage

    Raises:
        jinja2.UndefinedError: If a variable the template needs is missing
    """
    kind = NotificationKind(kind)
    subject = _subject_env.from_string(SUBJECT_TEMPLATES[kind]).render(**context)
    html = _html_env.get_template(f"{kind.value.lower()}.html").render(
        subject=subject, **context
    )
    return RenderedMessage(subject=subject, html=html.strip())
