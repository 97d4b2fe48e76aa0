from mineworker.cli_interface import run_app

run_app()
