"""Command-line interface for smartlibrary.

Built with Typer for commands and Rich for output. The notification
commands are what a cron job runs each morning.
"""

from datetime import date, datetime
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import get_config
from .db.schemas import (
    BookCreate,
    DeliveryStatus,
    LoanStatus,
    NotificationKind,
    UserCreate,
)
from .db.sqlite import NotFoundError, StoreError, get_db
from .logs import setup_logging
from .scheduler.schemas import NotificationCategory, TriggerResult
from .services import Services, build_services

# Create the main app
app = typer.Typer(
    name="smartlibrary",
    help="School library lending with due-date and overdue notifications.",
    no_args_is_help=True,
)

# Create sub-apps for command groups
books_app = typer.Typer(help="Manage the book inventory.")
app.add_typer(books_app, name="books")
accounts_app = typer.Typer(help="Register and approve library accounts.")
app.add_typer(accounts_app, name="accounts")
loans_app = typer.Typer(help="Borrow and return books.")
app.add_typer(loans_app, name="loans")
notify_app = typer.Typer(help="Run scheduled notification passes.")
app.add_typer(notify_app, name="notify")
logs_app = typer.Typer(help="Inspect the notification audit log.")
app.add_typer(logs_app, name="logs")

# Rich console for pretty output
console = Console()

_services: Optional[Services] = None

TODAY_OPTION = typer.Option(
    None, "--today", formats=["%Y-%m-%d"], help="Run as if today were this date"
)


# ============================================================================
# Helper Functions
# ============================================================================


def get_services() -> Services:
    """Get or create the services for this process."""
    global _services
    if _services is None:
        config = get_config()
        _services = build_services(config, db=get_db(str(config.db_path)))
    return _services


def reset_services() -> None:
    """Reset the cached services. Used for testing."""
    global _services
    _services = None


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")


def _as_date(value: Optional[datetime]) -> Optional[date]:
    return value.date() if value else None


def print_trigger_result(result: TriggerResult) -> None:
    """Print one trigger envelope."""
    lines = [
        f"Processed: {result.processed_count}",
        f"Sent: [green]{result.sent_count}[/green]",
        f"Failed: [red]{result.failed_count}[/red]",
    ]
    if result.skipped_count:
        lines.append(f"Skipped: {result.skipped_count}")
    if result.dry_run_count:
        lines.append(f"Logged only: {result.dry_run_count}")
    if result.trigger_id:
        lines.append(f"[dim]Trigger: {result.trigger_id}[/dim]")

    title = result.category.label.title() if result.category else "Notifications"
    style = "green" if result.success else "red"
    console.print(Panel("\n".join(lines), title=f"{title}: {result.message}", border_style=style))


# ============================================================================
# General Commands
# ============================================================================


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Configure logging for every command."""
    setup_logging("DEBUG" if verbose else get_config().log_level)


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"smartlibrary version {__version__}")


@app.command("init-db")
def init_db() -> None:
    """Create the database tables."""
    config = get_config()
    errors = config.validate()
    if errors:
        for error in errors:
            print_error(error)
        raise typer.Exit(1)

    get_services()
    print_success(f"Database ready at {config.db_path}")


# ============================================================================
# Book Commands
# ============================================================================


@books_app.command("add")
def books_add(
    title: str = typer.Option(..., "--title", "-t", help="Book title"),
    author: str = typer.Option(..., "--author", "-a", help="Author"),
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Genre"),
    copies: int = typer.Option(1, "--copies", "-c", help="Number of copies"),
) -> None:
    """Add a book to the inventory."""
    try:
        data = BookCreate(title=title, author=author, genre=genre, total_copies=copies)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    book = get_services().db.create_book(data)
    print_success(f"Added: {book.title} ({book.total_copies} copies)")
    console.print(f"[dim]ID: {book.id}[/dim]")


@books_app.command("show")
def books_show(book_id: str = typer.Argument(..., help="Book ID")) -> None:
    """Show a book and its copy counts."""
    db = get_services().db
    book = db.get_book(book_id)
    if not book:
        print_error(f"Book not found: {book_id}")
        raise typer.Exit(1)

    lines = [
        f"[bold]{book.title}[/bold]",
        f"by {book.author}",
        "",
        f"Genre: {book.genre or '-'}",
        f"Available: {book.available_copies} of {book.total_copies}",
        f"On loan: {db.count_active_loans(book.id)}",
    ]
    console.print(Panel("\n".join(lines), title="Book Details"))


@books_app.command("list")
def books_list() -> None:
    """List every book."""
    books = get_services().db.get_all_books()
    if not books:
        console.print("[dim]No books found[/dim]")
        return

    table = Table(title="Books", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", max_width=8)
    table.add_column("Title", style="cyan", max_width=40)
    table.add_column("Author", style="green", max_width=25)
    table.add_column("Available", justify="center")

    for book in books:
        table.add_row(
            book.id[:8], book.title, book.author, f"{book.available_copies}/{book.total_copies}"
        )

    console.print(table)


# ============================================================================
# Account Commands
# ============================================================================


@accounts_app.command("register")
def accounts_register(
    name: str = typer.Option(..., "--name", "-n", help="Full name"),
    email: str = typer.Option(..., "--email", "-e", help="Email address"),
    approve: bool = typer.Option(False, "--approve", help="Approve immediately"),
) -> None:
    """Register a new account."""
    from .accounts import AccountError

    services = get_services()
    try:
        user = services.accounts.register(UserCreate(full_name=name, email=email))
    except (AccountError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(1)

    if approve:
        user = services.accounts.approve(user.id)

    print_success(f"Registered {user.email} ({user.status})")
    console.print(f"[dim]ID: {user.id}[/dim]")


@accounts_app.command("approve")
def accounts_approve(user_id: str = typer.Argument(..., help="User ID")) -> None:
    """Approve an account so it can borrow."""
    try:
        user = get_services().accounts.approve(user_id)
    except NotFoundError as e:
        print_error(str(e))
        raise typer.Exit(1)
    print_success(f"Approved {user.email}")


@accounts_app.command("reject")
def accounts_reject(user_id: str = typer.Argument(..., help="User ID")) -> None:
    """Reject an account."""
    try:
        user = get_services().accounts.reject(user_id)
    except NotFoundError as e:
        print_error(str(e))
        raise typer.Exit(1)
    print_success(f"Rejected {user.email}")


@accounts_app.command("check-activity")
def accounts_check_activity(
    user_id: str = typer.Argument(..., help="User ID"),
    today: Optional[datetime] = TODAY_OPTION,
) -> None:
    """Send the inactive or welcome-back email for a user."""
    try:
        check = get_services().accounts.check_activity(user_id, _as_date(today))
    except NotFoundError as e:
        print_error(str(e))
        raise typer.Exit(1)

    label = "inactive" if check.kind == NotificationKind.USER_INACTIVE else "active"
    console.print(f"User is [bold]{label}[/bold] ({check.days_since_activity} day(s) since last activity)")


# ============================================================================
# Loan Commands
# ============================================================================


@loans_app.command("borrow")
def loans_borrow(
    user_id: str = typer.Argument(..., help="User ID"),
    book_id: str = typer.Argument(..., help="Book ID"),
) -> None:
    """Borrow a book for a user."""
    result = get_services().lending.borrow(user_id, book_id)
    if not result.success:
        print_error(f"{result.message} ({result.error.value})")
        raise typer.Exit(1)

    print_success(f"Borrowed, due {result.loan.due_date}")
    console.print(f"[dim]Loan ID: {result.loan.id}[/dim]")


@loans_app.command("return")
def loans_return(loan_id: str = typer.Argument(..., help="Loan ID")) -> None:
    """Return a borrowed book."""
    result = get_services().lending.return_loan(loan_id)
    if not result.success:
        print_error(f"{result.message} ({result.error.value})")
        raise typer.Exit(1)

    if result.already_returned:
        print_warning(result.message)
    else:
        print_success(result.message)


@loans_app.command("list")
def loans_list(
    user_id: Optional[str] = typer.Option(None, "--user", "-u", help="Filter by user ID"),
    active: bool = typer.Option(False, "--active", "-a", help="Show only active loans"),
    overdue: bool = typer.Option(False, "--overdue", "-o", help="Show only overdue loans"),
) -> None:
    """List loan records."""
    services = get_services()
    status = LoanStatus.BORROWED if active or overdue else None
    loans = services.lending.list_loans(user_id=user_id, status=status)

    today = services.config.local_date()
    if overdue:
        loans = [loan for loan in loans if loan.is_overdue(today)]

    if not loans:
        console.print("[dim]No loans found[/dim]")
        return

    table = Table(title="Loans", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", max_width=8)
    table.add_column("Book", style="cyan", max_width=30)
    table.add_column("User", max_width=25)
    table.add_column("Borrowed")
    table.add_column("Due")
    table.add_column("Status")

    for loan in loans:
        book = services.db.get_book(loan.book_id)
        user = services.db.get_user(loan.user_id)

        if loan.is_overdue(today):
            status_text = f"[red]OVERDUE ({loan.days_overdue(today)}d)[/red]"
        elif loan.is_active:
            status_text = "[yellow]BORROWED[/yellow]"
        else:
            status_text = "[green]RETURNED[/green]"

        table.add_row(
            loan.id[:8],
            book.title if book else "?",
            user.email if user else "?",
            loan.borrow_date[:10],
            loan.due_date,
            status_text,
        )

    console.print(table)


# ============================================================================
# Notification Commands
# ============================================================================


def _run_trigger(category: NotificationCategory, today: Optional[datetime], progress: bool) -> None:
    try:
        result = get_services().orchestrator.run_category(category, _as_date(today), progress)
    except StoreError as e:
        print_error(str(e))
        raise typer.Exit(1)
    print_trigger_result(result)


@notify_app.command("due-today")
def notify_due_today(
    today: Optional[datetime] = TODAY_OPTION,
    progress: bool = typer.Option(False, "--progress", "-p", help="Show progress bar"),
) -> None:
    """Send due-today notices."""
    _run_trigger(NotificationCategory.DUE_TODAY, today, progress)


@notify_app.command("due-tomorrow")
def notify_due_tomorrow(
    today: Optional[datetime] = TODAY_OPTION,
    progress: bool = typer.Option(False, "--progress", "-p", help="Show progress bar"),
) -> None:
    """Send due-tomorrow reminders."""
    _run_trigger(NotificationCategory.DUE_TOMORROW, today, progress)


@notify_app.command("overdue")
def notify_overdue(
    today: Optional[datetime] = TODAY_OPTION,
    progress: bool = typer.Option(False, "--progress", "-p", help="Show progress bar"),
) -> None:
    """Send overdue penalty notices."""
    _run_trigger(NotificationCategory.OVERDUE, today, progress)


@notify_app.command("consolidated")
def notify_consolidated(
    today: Optional[datetime] = TODAY_OPTION,
    progress: bool = typer.Option(False, "--progress", "-p", help="Show progress bar"),
) -> None:
    """Run all three passes. Exits non-zero unless every pass succeeded."""
    result = get_services().orchestrator.run_consolidated(_as_date(today), progress)

    for category_result in result.per_category.values():
        print_trigger_result(category_result)

    summary = f"{result.message} ({result.total_sent} sent)"
    if result.status == "success":
        print_success(summary)
    elif result.status == "partial_success":
        print_warning(summary)
        raise typer.Exit(1)
    else:
        print_error(summary)
        raise typer.Exit(1)


@notify_app.command("preview")
def notify_preview(today: Optional[datetime] = TODAY_OPTION) -> None:
    """Show how many loans each pass would notify."""
    counts = get_services().orchestrator.preview_recipient_counts(_as_date(today))

    table = Table(title="Recipients", show_header=True, header_style="bold magenta")
    table.add_column("Category", style="cyan")
    table.add_column("Loans", justify="right")
    table.add_row("Due today", str(counts.due_today))
    table.add_row("Due tomorrow", str(counts.due_tomorrow))
    table.add_row("Overdue", str(counts.overdue))
    table.add_row("[bold]Total[/bold]", f"[bold]{counts.total}[/bold]")
    console.print(table)


@notify_app.command("manual")
def notify_manual(
    category: NotificationCategory = typer.Argument(..., help="Category to notify"),
    today: Optional[datetime] = TODAY_OPTION,
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for a local pass to finish"),
) -> None:
    """Start a background pass for one category."""
    services = get_services()
    receipt = services.orchestrator.manual_trigger(category, _as_date(today))

    if not receipt.trigger_id:
        console.print(f"[dim]{receipt.message}[/dim]")
        return

    print_success(receipt.message)
    console.print(f"[dim]Trigger: {receipt.trigger_id} ({receipt.mode})[/dim]")

    worker = getattr(services.orchestrator.strategy, "worker", None)
    if wait and worker:
        job = worker.wait(receipt.trigger_id)
        report = services.orchestrator.job_status(receipt.trigger_id)
        counts = ", ".join(f"{k}: {v}" for k, v in sorted(report.counts.items())) or "no rows"
        console.print(f"Pass {job.state.value}: {counts}")
        if job.error:
            print_error(job.error)
            raise typer.Exit(1)


# ============================================================================
# Audit Log Commands
# ============================================================================


@logs_app.command("list")
def logs_list(
    kind: Optional[NotificationKind] = typer.Option(None, "--kind", "-k", help="Filter by kind"),
    status: Optional[DeliveryStatus] = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int = typer.Option(20, "--limit", "-l", help="Max rows"),
) -> None:
    """Show recent notification attempts."""
    entries = get_services().audit.list_entries(kind=kind, status=status, limit=limit)
    if not entries:
        console.print("[dim]No notifications logged[/dim]")
        return

    table = Table(title="Notification Log", show_header=True, header_style="bold magenta")
    table.add_column("Sent", style="dim")
    table.add_column("Kind", style="cyan")
    table.add_column("Recipient", max_width=30)
    table.add_column("Status")
    table.add_column("Attempts", justify="center")
    table.add_column("Error", style="red", max_width=30)

    colors = {"SENT": "green", "FAILED": "red", "PENDING": "yellow"}
    for entry in entries:
        color = colors[entry.delivery_status.value]
        table.add_row(
            entry.sent_at.strftime("%Y-%m-%d %H:%M"),
            entry.notification_kind.value,
            entry.recipient_email,
            f"[{color}]{entry.delivery_status.value}[/{color}]",
            str(entry.attempts),
            entry.error_message or "",
        )

    console.print(table)


@logs_app.command("summary")
def logs_summary() -> None:
    """Totals per delivery status and per kind."""
    summary = get_services().audit.summary()

    lines = [f"Total: [bold]{summary.total}[/bold]", ""]
    for status, count in sorted(summary.by_status.items()):
        lines.append(f"{status}: {count}")
    lines.append("")
    for kind, count in sorted(summary.by_kind.items()):
        lines.append(f"{kind}: {count}")

    console.print(Panel("\n".join(lines), title="Notification Summary"))


# ============================================================================
# Server
# ============================================================================


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(5000, "--port", help="Port"),
    debug: bool = typer.Option(False, "--debug", help="Flask debug mode"),
) -> None:
    """Run the JSON API server."""
    from .web import run_server

    run_server(host=host, port=port, debug=debug)


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
