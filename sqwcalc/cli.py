import typer
import yaml
import os
import logging
from typing_extensions import Annotated

from sqwcalc import runner
from sqwcalc.schema import SqwCalcConfig

app = typer.Typer(help="sqwcalc: Dynamical Structure Factor Calculator CLI")

logger = logging.getLogger("sqwcalc")

TEMPLATE = """
crystal:
  lattice_parameters:
    a: 1.0
    b: 1.0
    c: 2.0
  atoms:
    - label: "Fe1"
      pos: [0, 0, 0]
      spin_S: 1.0

system:
  latsize: [8, 8, 1]
  exchange:
    - pair: ["Fe1", "Fe1"]
      offset: [1, 0, 0]
      J: -1.0
    - pair: ["Fe1", "Fe1"]
      offset: [0, 1, 0]
      J: -1.0

structure_factor:
  dt: 0.05
  num_freqs: 100
  max_freq: 10.0

sampling:
  kT: 0.2
  num_samples: 5
  sweeps_per_sample: 50
  thermalize_sweeps: 500

queries:
  contraction: perp
  interpolation: linear
  path:
    points:
      G: [0, 0, 0]
      X: [0.5, 0, 0]
      M: [0.5, 0.5, 0]
    labels: [G, X, M, G]
    density: 20
""".strip()


@app.callback()
def configure(
    debug: Annotated[bool, typer.Option("--debug", help="Enable debug logging.")] = False
):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S',
    )


@app.command()
def init(
    filename: Annotated[str, typer.Argument(help="Filename for the new config")] = "config.yaml"
):
    """
    Generate a template configuration file.
    """
    if os.path.exists(filename):
        typer.confirm(f"{filename} already exists. Overwrite?", abort=True)
    with open(filename, "w") as f:
        f.write(TEMPLATE + "\n")
    typer.echo(f"Created template config: {filename}")


@app.command()
def validate(
    config_file: Annotated[str, typer.Argument(help="Path to the config.yaml file")]
):
    """
    Validate a configuration file against the schema.
    """
    if not os.path.exists(config_file):
        typer.secho(f"Error: File {config_file} not found.", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    try:
        with open(config_file, 'r') as f:
            data = yaml.safe_load(f)
        SqwCalcConfig.model_validate(data)
        typer.secho(f"Success: {config_file} is valid.", fg=typer.colors.GREEN)
    except Exception as e:
        typer.secho("Validation Failed:", fg=typer.colors.RED)
        typer.echo(str(e))
        raise typer.Exit(code=1)


@app.command()
def run(
    config_file: Annotated[str, typer.Argument(help="Path to the config.yaml file")]
):
    """
    Accumulate the structure factor and run the queries defined in the configuration file.
    """
    try:
        runner.run_calculation(config_file)
        typer.secho("Calculation completed successfully.", fg=typer.colors.GREEN)
    except Exception as e:
        logger.exception("Calculation failed.")
        typer.secho(f"Calculation failed: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


# Entry point for setuptools
def main():
    app()


if __name__ == "__main__":
    app()
