from wikterm.cli import app

app(prog_name="wikterm")
