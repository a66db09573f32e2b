from .core import app

app()
