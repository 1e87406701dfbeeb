"""
Flask CLI commands.

Commands:
- flask init-db: Create all tables
- flask create-profile: Register a staff profile for an identity provider user
"""

import click
from farmstore import database
from farmstore.models import Profile, ProfileRole


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables."""
        database.create_all()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('create-profile')
    @click.option('--external-id', prompt=True, help='User id issued by the identity provider')
    @click.option('--name', default=None, help='Full name')
    @click.option('--role', type=click.Choice([r.value for r in ProfileRole]), default=ProfileRole.WORKER.value)
    def create_profile(external_id, name, role):
        """Create or update a profile and its role."""
        session = database.get_session()
        try:
            profile = session.query(Profile).filter_by(external_id=external_id).first()
            if profile:
                profile.role = role
                if name:
                    profile.full_name = name
            else:
                profile = Profile(external_id=external_id, full_name=name, role=role)
                session.add(profile)
            session.commit()
            click.echo(click.style(f'Profile {external_id} saved with role {role}.', fg='green'))
        except Exception as e:
            session.rollback()
            click.echo(click.style(f'Error saving profile: {e}', fg='red'))
            raise SystemExit(1)
