#!/usr/bin/env python3

import logging
import sys
from pathlib import Path

import click
from PIL import Image, UnidentifiedImageError

from digit_classifier import DigitClassifier, DigitClassifierError, ModelManager, ModelProvisioner, RemoteModel, \
    Settings
from digit_classifier._utilities import configure_logging

logger = logging.getLogger("digit_classifier")


def _manager(settings: Settings) -> ModelManager:
    return ModelManager(settings.registry_url, settings.models_dir,
                        is_metered=lambda: settings.metered, timeout=settings.timeout)


@click.group()
@click.option('--model', 'model_name', help="Name of the model in the registry.")
@click.option('--registry-url', help="Root URL of the model registry.")
@click.option('--cache-dir', type=click.Path(file_okay=False, path_type=Path),
              help="Directory downloaded models are kept in.")
@click.option('--metered/--unmetered', default=None, help="Whether the current connection is metered.")
@click.option('--log-level', type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.pass_context
def main(ctx: click.Context, model_name, registry_url, cache_dir, metered, log_level):
    try:
        settings = Settings.from_env().replace(model_name=model_name, registry_url=registry_url,
                                               cache_dir=cache_dir, metered=metered, log_level=log_level)
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    configure_logging(settings.log_level)
    ctx.obj = settings


@main.command()
@click.pass_obj
def run(settings: Settings):
    """Start the drawing application."""
    from PyQt6.QtWidgets import QApplication
    from digit_classifier import ClassifierApplication

    app = QApplication(sys.argv)
    sys.exit(ClassifierApplication.Controller(app, settings).run())


@main.group()
def model():
    """Manage the local copy of the model."""


@model.command()
@click.pass_obj
def status(settings: Settings):
    """Show whether the model has been downloaded."""
    manager = _manager(settings)
    remote = RemoteModel(settings.model_name)
    path = manager.get_latest_model_file(remote)
    if path is None:
        click.echo(f"{remote.name}: not downloaded")
        return

    manifest = manager.local_manifest(remote)
    version = manifest.version if manifest is not None else "unknown"
    click.echo(f"{remote.name}: version {version} at {path}")


@model.command()
@click.option('--force', is_flag=True, help="Download even over a metered connection.")
@click.pass_obj
def fetch(settings: Settings, force: bool):
    """Download or update the model."""
    if force:
        settings = settings.replace(metered=False)
    provisioner = ModelProvisioner(_manager(settings))

    with click.progressbar(length=0, label=f"Downloading {settings.model_name}") as bar:
        def progress(downloaded: int, total: int):
            bar.length = total
            bar.update(downloaded - bar.pos)

        try:
            path = provisioner.provision(settings.model_name, progress).result()
        except DigitClassifierError as e:
            raise click.ClickException(str(e)) from e
        finally:
            provisioner.close()

    click.echo(f"Model available at {path}")


@model.command()
@click.pass_obj
def remove(settings: Settings):
    """Delete the local copy of the model."""
    if _manager(settings).delete_downloaded_model(RemoteModel(settings.model_name)):
        click.echo(f"Removed {settings.model_name}")
    else:
        click.echo(f"{settings.model_name} is not downloaded")


@main.command()
@click.argument('image', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def classify(settings: Settings, image: Path):
    """Classify an image with the downloaded model."""
    path = _manager(settings).get_latest_model_file(RemoteModel(settings.model_name))
    if path is None:
        raise click.ClickException(f"{settings.model_name} is not downloaded, run 'model fetch' first")

    try:
        with Image.open(image) as picture:
            picture.load()
    except (OSError, UnidentifiedImageError) as e:
        raise click.ClickException(f"Could not read {image}: {e}") from e

    classifier = DigitClassifier()
    try:
        classifier.initialize(path)
        click.echo(classifier.classify(picture))
    except DigitClassifierError as e:
        logger.debug("Classification failed", exc_info=e)
        raise click.ClickException(str(e)) from e
    finally:
        classifier.close()


if __name__ == '__main__':
    main()
