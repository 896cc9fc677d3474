"""
CLI interface for quizgen.

Operator commands for inspecting and initializing the data directory and for
generating quizzes on behalf of a user.
"""

import sys
from typing import Optional, Tuple

import openai
import typer
import yaml
from rich.console import Console
from rich.table import Table

from quizgen.config.loader import AppConfig, default_config, load_app_config
from quizgen.config.logging_config import setup_logging
from quizgen.core.attempts import QuizSessionAuthority
from quizgen.core.quizzes import QuizLibrary, UnknownUserError
from quizgen.core.usage import QuotaExceededError, UsageMeter
from quizgen.demo.seed_demo_data import seed_demo_data
from quizgen.sdk import MeteredQuizGenerator
from quizgen.storage.db import COLLECTIONS, StorageError
from quizgen.storage.repository import Database

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DATA_DIR_OPTION = typer.Option(
    None,
    "--data-dir",
    "-d",
    help="Directory holding the collection files (overrides the config file)"
)
CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to a YAML configuration file"
)

_CLI_ERRORS = (StorageError, ValueError, FileNotFoundError, yaml.YAMLError)


def _load_config(config_path: Optional[str]) -> AppConfig:
    if config_path is None:
        return default_config()
    return load_app_config(config_path)


def _open(data_dir: Optional[str], config_path: Optional[str]) -> Tuple[AppConfig, Database]:
    """Load configuration, set up logging and open the database."""
    config = _load_config(config_path)
    setup_logging(config.logging.level, config.logging.file)
    return config, Database(data_dir or config.storage.data_dir)


def _open_database(data_dir: Optional[str], config_path: Optional[str]) -> Database:
    return _open(data_dir, config_path)[1]


def _fail(error: Exception) -> None:
    console.print(f"[red]Error:[/] {error}")
    sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """quizgen CLI."""
    if ctx.invoked_subcommand is None:
        console.print("quizgen - Use --help to see available commands")


@app.command()
def init(
    data_dir: Optional[str] = DATA_DIR_OPTION,
    config: Optional[str] = CONFIG_OPTION
):
    """Create empty collection files in the data directory."""
    try:
        db = _open_database(data_dir, config)
        created = db.store.initialize()
    except _CLI_ERRORS as e:
        _fail(e)
    console.print(
        f"[green]✓[/] Data directory {db.store.data_dir} ready "
        f"({len(created)} collection(s) created)"
    )
    sys.exit(EXIT_CODE_PASS)


@app.command()
def status(
    data_dir: Optional[str] = DATA_DIR_OPTION,
    config: Optional[str] = CONFIG_OPTION
):
    """Show how many records each collection holds."""
    try:
        db = _open_database(data_dir, config)
        counts = {name: len(db.store.load(name)) for name in COLLECTIONS}
    except _CLI_ERRORS as e:
        _fail(e)

    table = Table(title=f"Collections in {db.store.data_dir}")
    table.add_column("Collection")
    table.add_column("Records", justify="right")
    for name, count in counts.items():
        table.add_row(name, str(count))
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def usage(
    user_id: str = typer.Argument(..., help="User id"),
    data_dir: Optional[str] = DATA_DIR_OPTION,
    config: Optional[str] = CONFIG_OPTION
):
    """Show a user's metered usage for the current month."""
    try:
        db = _open_database(data_dir, config)
        snapshot = UsageMeter(db).get_current_usage(user_id)
    except _CLI_ERRORS as e:
        _fail(e)

    console.print(f"\n[bold]Usage for {user_id} in {snapshot.month_year}[/bold]")
    console.print(f"Used: {snapshot.used} / {snapshot.limit}")
    if snapshot.remaining:
        console.print(f"Remaining: {snapshot.remaining}")
    else:
        console.print("[bold yellow]Monthly limit reached[/]")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def history(
    user_id: str = typer.Argument(..., help="User id"),
    data_dir: Optional[str] = DATA_DIR_OPTION,
    config: Optional[str] = CONFIG_OPTION
):
    """List a user's quiz attempts, newest first."""
    try:
        db = _open_database(data_dir, config)
        summaries = QuizSessionAuthority(db).attempt_history(user_id)
    except _CLI_ERRORS as e:
        _fail(e)

    if not summaries:
        console.print(f"[dim]No attempts found for {user_id}.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Attempts by {user_id}")
    table.add_column("Completed")
    table.add_column("Quiz")
    table.add_column("Score", justify="right")
    for summary in summaries:
        attempt = summary.attempt
        title = "[dim]Deleted quiz[/]" if summary.quiz_deleted else summary.quiz_title
        table.add_row(
            attempt.completed_at.strftime("%Y-%m-%d %H:%M"),
            title,
            f"{attempt.score}/{attempt.total_questions}"
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def quizzes(
    user_id: str = typer.Argument(..., help="User id"),
    data_dir: Optional[str] = DATA_DIR_OPTION,
    config: Optional[str] = CONFIG_OPTION
):
    """List the quiz sets a user created, with attempt counts."""
    try:
        db = _open_database(data_dir, config)
        summaries = QuizLibrary(db).list_quizzes(user_id)
    except _CLI_ERRORS as e:
        _fail(e)

    if not summaries:
        console.print(f"[dim]No quizzes found for {user_id}.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Quizzes by {user_id}")
    table.add_column("Id")
    table.add_column("Title")
    table.add_column("Attempts", justify="right")
    for summary in summaries:
        table.add_row(summary.quiz.id, summary.quiz.title, str(summary.attempt_count))
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def generate(
    user_id: str = typer.Argument(..., help="User id"),
    prompt: str = typer.Argument(..., help="What the quiz should cover"),
    data_dir: Optional[str] = DATA_DIR_OPTION,
    config: Optional[str] = CONFIG_OPTION
):
    """Generate a quiz for a user with the configured model and save it."""
    try:
        app_config, db = _open(data_dir, config)
        if db.users.find_unique(id=user_id) is None:
            raise UnknownUserError(user_id)
        meter = UsageMeter(db)
        generator = MeteredQuizGenerator.from_config(meter, app_config.generation)
        data = generator.generate_from_prompt(user_id, prompt)
        quiz = QuizLibrary(db).create_quiz(
            user_id, data["title"], data["questions"], description=data["description"]
        )
        snapshot = meter.get_current_usage(user_id)
    except _CLI_ERRORS + (QuotaExceededError, UnknownUserError, openai.OpenAIError) as e:
        _fail(e)

    console.print(f"[green]✓[/] Quiz {quiz.title} saved (id {quiz.id}, {len(data['questions'])} questions)")
    console.print(f"Used: {snapshot.used} / {snapshot.limit}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def seed(
    data_dir: Optional[str] = DATA_DIR_OPTION,
    config: Optional[str] = CONFIG_OPTION
):
    """Insert a demo user, quiz, attempt and usage record."""
    try:
        db = _open_database(data_dir, config)
        user, quiz = seed_demo_data(db)
    except _CLI_ERRORS as e:
        _fail(e)
    console.print(f"[green]✓[/] Demo data inserted for {user.email} (user {user.id}, quiz {quiz.id})")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
