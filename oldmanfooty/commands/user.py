"""User management CLI commands."""

import click
from flask.cli import with_appcontext

from oldmanfooty.extensions import db
from oldmanfooty.models import Club, User
from oldmanfooty.services import catalog


@click.group('user')
def user_commands():
    """User management commands."""
    pass


@user_commands.command('create')
@click.option('--email', required=True, help='User email')
@click.option('--password', required=True, help='User password')
@click.option('--first-name', default=None, help='First name')
@click.option('--last-name', default=None, help='Last name')
@click.option('--admin', 'is_admin', is_flag=True, help='Grant administrator privileges')
@click.option('--club', 'club_name', default=None, help='Club name to attach the user to as a delegate')
@click.option('--primary-delegate', is_flag=True, help='Mark the user as the club\'s primary delegate')
@with_appcontext
def create_user(email, password, first_name, last_name, is_admin, club_name, primary_delegate):
    """Create a user, optionally as a club delegate."""
    email = email.strip().lower()
    existing = db.session.query(User).filter_by(email=email).first()
    if existing:
        click.echo(click.style(f'Error: User with email "{email}" already exists', fg='red'))
        return

    club = None
    if club_name:
        club = db.session.query(Club).filter_by(club_name=' '.join(club_name.split())).first()
        if not club:
            click.echo(click.style(f'Error: Club "{club_name}" not found', fg='red'))
            return

    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        is_admin=is_admin,
        club_id=club.id if club else None,
        is_primary_delegate=bool(club) and primary_delegate,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    click.echo(click.style('User created successfully!', fg='green'))
    click.echo(f'  Email: {email}')
    click.echo(f'  Admin: {is_admin}')
    if club:
        click.echo(f'  Club: {club.club_name}')


@user_commands.command('set-password')
@click.option('--email', required=True, help='User email')
@click.option('--password', required=True, help='New password')
@with_appcontext
def set_password(email, password):
    """Set or reset a user's password."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        click.echo(click.style(f'Error: No user {email} found', fg='red'))
        return
    if user.is_system:
        click.echo(click.style('Error: the system user cannot have a password', fg='red'))
        return

    user.set_password(password)
    db.session.commit()
    click.echo(click.style('Password updated.', fg='green'))


@user_commands.command('ensure-system')
@with_appcontext
def ensure_system():
    """Create the proxy author used for MySideline imports if it is missing."""
    with catalog.begin_sync_transaction() as tx:
        user = catalog.ensure_system_user(tx)
        user_id, email = user.id, user.email
    click.echo(click.style(f'System user ready: {email} ({user_id})', fg='green'))
