# tips/cli/room.py
import click
from flask.cli import AppGroup

from tips.models.domain import new_id
from tips.services.store import get_store

room_group = AppGroup("room", help="Sala compartida (código de sala)")


@room_group.command("show")
def show_room():
    """Muestra la sala actual, el usuario local y el estado de sincronización."""
    store = get_store()
    user = store.current_user
    click.echo(f"Sala: {store.room_code or '(ninguna)'}")
    click.echo(f"Usuario: {user.name + (' (admin)' if user.is_admin else '') if user else '(sin identidad)'}")
    if store.sync_error:
        click.secho(f"Error de sincronización: {store.sync_error}", fg="yellow")


@room_group.command("join")
@click.argument("code")
@click.option("--name", default=None, help="Nombre con el que unirse si aún no hay identidad local")
@click.option("--admin", is_flag=True, default=False, help="Unirse como admin")
def join_room(code, name, admin):
    """Cambia a la sala CODE (y crea la identidad local si se da --name)."""
    store = get_store()
    store.set_room_code(code.strip())
    if name:
        user = store.join(name, admin)
        if user is None:
            raise click.ClickException("No se pudo registrar el usuario en la sala.")
        click.secho(f"{user.name} unido a la sala {code}", fg="green")
    else:
        click.secho(f"Sala actual: {code}", fg="green")


@room_group.command("new")
def new_room():
    """Crea una sala nueva con un código aleatorio."""
    store = get_store()
    code = new_id()
    store.set_room_code(code)
    click.secho(f"Sala nueva: {code}", fg="green")
