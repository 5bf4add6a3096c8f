# tips/cli/export.py
import os
from datetime import datetime

import click
from flask.cli import AppGroup

from tips import db
from tips.services import history
from tips.services.store import get_store

export_group = AppGroup("export", help="Comandos de exportación (CSV, etc.)")
cache_group = AppGroup("cache", help="Caché local (SQLite)")


@export_group.command("log")
@click.option("--to", "dest_path", default=None,
              help="Ruta destino del CSV (por defecto: instance/consumption_log_YYYYMMDD.csv)")
def export_log(dest_path):
    """
    Exporta el registro de consumos completo a CSV.
    """
    if not dest_path:
        ts = datetime.now().strftime("%Y%m%d")
        dest_path = os.path.join("instance", f"consumption_log_{ts}.csv")

    # Asegura carpeta destino
    os.makedirs(os.path.dirname(dest_path) or ".", exist_ok=True)

    store = get_store()
    data = store.run(history.export_csv, store)
    with open(dest_path, "w", newline="", encoding="utf-8") as fh:
        fh.write(data)

    rows = max(0, len(data.splitlines()) - 1)
    click.secho(f"Exportadas {rows} entradas a: {dest_path}", fg="green")


@cache_group.command("init")
def cache_init():
    """Crea las tablas de la caché local si no existen (sin migraciones)."""
    db.create_all()
    click.secho("Tablas de caché listas", fg="green")
