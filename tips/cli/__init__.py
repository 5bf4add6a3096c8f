# tips/cli/__init__.py
from .room import room_group
from .daily import daily_group, timer_group, notifications_group
from .export import export_group, cache_group


def register_cli(app):
    """Registra los grupos y comandos CLI de la app."""
    app.cli.add_command(room_group)
    app.cli.add_command(daily_group)
    app.cli.add_command(timer_group)
    app.cli.add_command(notifications_group)
    app.cli.add_command(export_group)
    app.cli.add_command(cache_group)
