# tips/cli/daily.py
import time

import click
from flask.cli import AppGroup

from tips.services.store import get_store
from tips.services.timer import TimerTicker

daily_group = AppGroup("daily", help="Reset diario de marcas y plegado")
timer_group = AppGroup("timer", help="Temporizador de treatment food")
notifications_group = AppGroup("notifications", help="Notificaciones locales programadas")


# ---- daily ----
@daily_group.command("reset")
def daily_reset():
    """Fuerza el reset diario (quita las marcas de hoy)."""
    store = get_store()
    store.reset_daily()
    click.secho(f"Reset diario hecho ({store.last_reset_date})", fg="green")


@daily_group.command("check")
def daily_check():
    """Hace el reset solo si no se ha hecho hoy."""
    store = get_store()
    if store.check_and_reset_if_needed():
        click.secho("Reset diario hecho", fg="green")
    else:
        click.echo(f"Nada que hacer: último reset {store.last_reset_date}")


# ---- timer ----
def _format_remaining(seconds):
    seconds = int(seconds)
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


@timer_group.command("status")
def timer_status():
    store = get_store()
    remaining = store.run(store.timer.remaining)
    if remaining is None or remaining <= 0:
        click.echo("Temporizador parado")
    else:
        click.echo(f"Restante {_format_remaining(remaining)} (fin {store.treatment_timer_end})")


@timer_group.command("tick")
@click.option("--watch", is_flag=True, default=False, help="Repite cada segundo hasta Ctrl+C")
def timer_tick(watch):
    """Un tick (o bucle de 1 Hz con --watch) y entrega de notificaciones vencidas."""
    store = get_store()
    ticker = TimerTicker(store)
    while True:
        remaining = ticker.step()
        if remaining:
            click.echo(f"\r{_format_remaining(remaining)}", nl=not watch)
        if not watch:
            break
        time.sleep(ticker.interval)


# ---- notifications ----
@notifications_group.command("list")
def notifications_list():
    store = get_store()
    pending = store.run(store.notifications.pending)
    if not pending:
        click.echo("No hay notificaciones pendientes")
    for n in pending:
        click.echo(f"{n.fire_at:%Y-%m-%d %H:%M:%S}  {n.category:<18} {n.id}  {n.title}")


@notifications_group.command("deliver")
def notifications_deliver():
    """Entrega las notificaciones que ya han vencido."""
    store = get_store()
    delivered = store.run(store.notifications.deliver_due)
    for n in delivered:
        click.secho(f"[{n['category']}] {n['title']}: {n['body']}", fg="cyan")
    click.echo(f"Entregadas: {len(delivered)}")
