"""
Flask CLI commands.

Commands:
- flask init-db: Create all tables
- flask create-user: Create a user with a role
- flask purge-expired-invoices: Run the purge sweep once
"""

import click
import re
from flask import current_app
from payables.database import get_session, create_all
from payables.models import AppUser, UserRole


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create database tables for all models."""
        create_all()
        click.echo(click.style('✅ Database tables created', fg='green'))

    @app.cli.command('create-user')
    @click.option('--email', prompt=True, help='User email address')
    @click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='User password')
    @click.option('--role', type=click.Choice([r.value for r in UserRole]),
                  default=UserRole.STANDARD_USER.value, show_default=True)
    @click.option('--full-name', default=None, help='Display name')
    def create_user(email, password, role, full_name):
        """Create a new application user."""
        db_session = get_session()

        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, email):
            click.echo(click.style('❌ Invalid email. Use user@example.com', fg='red'))
            return

        if len(password) < 8:
            click.echo(click.style('❌ Password must be at least 8 characters.', fg='red'))
            return

        if db_session.query(AppUser).filter_by(email=email).first():
            click.echo(click.style(f'❌ A user with email {email} already exists', fg='red'))
            return

        try:
            user = AppUser(email=email, role=role, full_name=full_name)
            user.set_password(password)
            db_session.add(user)
            db_session.commit()
            click.echo(click.style(f'✅ User created: {email} ({role}), id {user.id}', fg='green'))
        except Exception as e:
            db_session.rollback()
            click.echo(click.style(f'❌ Failed to create user: {str(e)}', fg='red'))

    @app.cli.command('purge-expired-invoices')
    @click.option('--batch-size', type=int, default=None, help='Maximum invoices to purge')
    def purge_expired_invoices_command(batch_size):
        """Permanently delete hidden invoices past their recovery deadline."""
        from payables.services.purge_service import purge_expired_invoices

        result = purge_expired_invoices(
            get_session(),
            batch_size=batch_size or current_app.config.get('PURGE_BATCH_SIZE')
        )
        color = 'green' if result['failed'] == 0 else 'yellow'
        click.echo(click.style(
            f"Purged {result['purged']}, failed {result['failed']}, "
            f"remaining {result['remaining']} ({result['duration_ms']}ms)",
            fg=color
        ))
        for error in result['errors']:
            click.echo(f"  - {error['invoice_number']}: {error['error']}")
