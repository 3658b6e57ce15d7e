import os
import secrets

import click
from flask import current_app

from .credentials import CredentialStore
from .errors import AuthServiceError
from .models import EmailStatus, UserRole
from .refresh_tokens import RefreshTokenManager
from .utils import Validator


def _components():
    return current_app.extensions['igrotrend_auth']


def register_commands(app):

    @app.cli.command('init-db')
    def init_db():
        """Create all tables."""
        _components().database.create_all()
        click.echo('Database initialised')

    @app.cli.command('seed-developer')
    def seed_developer():
        """Create the developer account from DEV_EMAIL / DEV_PASSWORD / DEV_USERNAME."""
        c = _components()
        email = os.getenv('DEV_EMAIL', 'dev@igrotrend.local')
        password = os.getenv('DEV_PASSWORD') or secrets.token_hex(8)
        username = os.getenv('DEV_USERNAME', 'developer')

        db = c.database.session()
        try:
            store = CredentialStore(db, c.crypto, Validator(c.settings))
            existing = store.find_by_email(email)
            if existing:
                click.echo(f'Developer account already exists: {email} ({existing.role.value})')
                return
            user = store.create(
                email, password, username,
                display_name='Developer',
                role=UserRole.DEVELOPER,
                email_status=EmailStatus.VERIFIED,
            )
        except AuthServiceError as e:
            raise click.ClickException(e.message)
        finally:
            db.close()

        click.echo(f'Developer account created: {user.email} ({user.username})')
        if not os.getenv('DEV_PASSWORD'):
            click.echo(f'Password: {password}')
            click.echo('Save this password securely; set DEV_PASSWORD to choose your own.')

    @app.cli.command('set-role')
    @click.argument('email')
    @click.argument('role', type=click.Choice([r.value for r in UserRole], case_sensitive=False))
    def set_role(email, role):
        """Change the role of an existing user."""
        c = _components()
        db = c.database.session()
        try:
            user = CredentialStore(db, c.crypto, Validator(c.settings)).update_role(email, UserRole(role.upper()))
        except AuthServiceError as e:
            raise click.ClickException(e.message)
        finally:
            db.close()
        click.echo(f'{user.email} is now {user.role.value}')

    @app.cli.command('purge-expired-tokens')
    def purge_expired_tokens():
        """Delete refresh tokens past their expiry."""
        c = _components()
        db = c.database.session()
        try:
            removed = RefreshTokenManager(db, c.crypto).purge_expired()
        finally:
            db.close()
        click.echo(f'Removed {removed} expired refresh tokens')
