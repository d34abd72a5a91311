from install_certs.cli import app

app(prog_name="install-certs")
