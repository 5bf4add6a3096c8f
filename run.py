import os
from dotenv import load_dotenv

# 1. Carga las variables de .env
load_dotenv()

# 2. Importa el factory desde tips/__init__.py
from tips import create_app, start_workers

# 3. Crea la app
app = create_app()

# 4. Permite ejecutar con `python run.py` (arranca también el ticker de 1 Hz)
if __name__ == "__main__":
    debug = os.getenv("FLASK_ENV", "development") == "development"
    start_workers(app)
    # sin reloader: el ticker y los streams viven en este proceso
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", 5000)), debug=debug, use_reloader=False)
