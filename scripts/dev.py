#!/usr/bin/env python3
"""
Development script for the Coaching Portal
Run with: python scripts/dev.py [command]
"""

import argparse
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

ROOT = Path(__file__).parent.parent
console = Console()


def run_command(cmd: list[str], description: str = ""):
    """Run a command and handle errors"""
    if description:
        console.print(f"🚀 [bold cyan]{description}[/bold cyan]")

    try:
        result = subprocess.run(cmd, check=True, cwd=ROOT)
        return result.returncode == 0
    except subprocess.CalledProcessError as e:
        console.print(f"❌ [bold red]Command failed:[/bold red] {' '.join(cmd)}")
        console.print(f"Error: {e}")
        return False


def serve():
    """Start the development server"""
    console.print(Panel("🏋️ Coaching Portal development server", border_style="green"))
    run_command(
        [
            "uvicorn",
            "main:create_app",
            "--factory",
            "--reload",
            "--host",
            "0.0.0.0",
            "--port",
            "8000",
        ],
        "Starting FastAPI server with hot reload",
    )


def test():
    """Run tests"""
    run_command(["pytest", "-v"], "Running tests")


def format_code():
    """Format code with black and isort"""
    run_command(["black", "."], "Formatting code with black")
    run_command(["isort", "."], "Organizing imports with isort")


def lint():
    """Run linting checks"""
    run_command(["flake8", "."], "Running flake8 linting")
    run_command(["mypy", "."], "Running mypy type checking")


def check():
    """Run all checks (format, lint, test)"""
    console.print("🔍 [bold]Running all checks...[/bold]")
    success = True
    success &= run_command(["black", "--check", "."], "Checking code formatting")
    success &= run_command(["isort", "--check-only", "."], "Checking import organization")
    success &= run_command(["flake8", "."], "Running linting")
    success &= run_command(["mypy", "."], "Running type checking")
    success &= run_command(["pytest", "-v"], "Running tests")

    if success:
        console.print("✅ [bold green]All checks passed![/bold green]")
    else:
        console.print("❌ [bold red]Some checks failed![/bold red]")
        sys.exit(1)


def show_config():
    """Print the effective settings, secrets masked"""
    sys.path.insert(0, str(ROOT))
    from app.logging_setup import redact
    from app.settings import load_settings

    try:
        settings = load_settings()
    except ValueError as e:
        console.print(f"❌ [bold red]{e}[/bold red]")
        sys.exit(1)

    table = Table(title="⚙️ Coaching Portal settings", show_header=True, header_style="bold magenta")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in redact(settings.model_dump()).items():
        table.add_row(name, str(value))
    console.print(table)


def setup():
    """Setup development environment"""
    console.print("🛠️ Setting up Coaching Portal development environment...")

    env_file = ROOT / ".env"
    env_example = ROOT / ".env.example"

    if not env_file.exists() and env_example.exists():
        env_file.write_text(env_example.read_text())
        console.print("📝 Created .env file from .env.example")
        console.print("⚠️  [yellow]Please update .env with your Supabase URL and anon key[/yellow]")

    console.print("✅ [green]Development environment setup complete![/green]")
    console.print("\n📋 Next steps:")
    console.print("1. Update .env with your Supabase project settings")
    console.print("2. Run: python scripts/dev.py db-migrate")
    console.print("3. Run: python scripts/dev.py serve")


def db_migrate():
    """Run database migrations"""
    console.print("🗄️ Running database migrations...")
    console.print("Please run the SQL schema manually in your Supabase dashboard:")
    console.print("📄 File: database/schema.sql")


def main():
    parser = argparse.ArgumentParser(description="Coaching Portal development tools")
    parser.add_argument(
        "command",
        choices=["serve", "test", "format", "lint", "check", "config", "setup", "db-migrate"],
        help="Command to run",
    )

    args = parser.parse_args()

    commands = {
        "serve": serve,
        "test": test,
        "format": format_code,
        "lint": lint,
        "check": check,
        "config": show_config,
        "setup": setup,
        "db-migrate": db_migrate,
    }

    commands[args.command]()


if __name__ == "__main__":
    main()
