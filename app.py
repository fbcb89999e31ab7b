import json
import logging
import os
from pathlib import Path

import click
from flask import Flask, jsonify, request, send_file

from errors import CatalogError
from images import InvalidImageName, resolve_image_path, save_image
from models import db
from store import CatalogStore


# --- INITIALIZATION ---
def create_app(test_config=None):
    app = Flask(__name__)
    app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get(
        "CATALOG_DATABASE_URI", "sqlite:///catalog.db"
    )
    app.config["IMAGE_DIR"] = os.environ.get("IMAGE_DIR", "images")
    app.config["FRONT_URL"] = os.environ.get("FRONT_URL", "http://localhost:3000")
    if test_config:
        app.config.update(test_config)

    db.init_app(app)
    with app.app_context():
        db.create_all()

    store = CatalogStore(db.session)
    app.extensions["catalog_store"] = store

    register_cors(app)
    register_error_handlers(app)
    register_routes(app, store)
    register_commands(app, store)
    return app


def register_cors(app):
    @app.after_request
    def add_cors_headers(response):
        response.headers["Access-Control-Allow-Origin"] = app.config["FRONT_URL"]
        response.headers["Access-Control-Allow-Methods"] = "GET, PUT, POST, DELETE"
        response.headers["Vary"] = "Origin"
        return response


def register_error_handlers(app):
    @app.errorhandler(InvalidImageName)
    def invalid_image_name(e):
        return jsonify(message=str(e)), 400

    @app.errorhandler(CatalogError)
    def catalog_error(e):
        app.logger.exception("Catalog failure: %s", e)
        return jsonify(message="Internal error"), 500


# --- ROUTES ---
def register_routes(app, store):
    @app.route("/")
    def root():
        return jsonify(message="Hello, world!")

    @app.route("/items", methods=["GET"])
    def get_all_items():
        items = store.get_all_items()
        return jsonify(items=[item.to_dict() for item in items])

    @app.route("/items/<int:item_id>", methods=["GET"])
    def get_item(item_id):
        item = store.get_item_by_id(item_id)
        if item is None:
            return jsonify(message="Not found"), 404
        return jsonify(item.to_dict())

    @app.route("/items", methods=["POST"])
    def add_item():
        name = request.form.get("name", "").strip()
        category = request.form.get("category", "").strip()
        upload = request.files.get("image")
        if not name or not category or upload is None or not upload.filename:
            return jsonify(message="name, category and image are required"), 400

        image_filename = save_image(app.config["IMAGE_DIR"], upload.read())
        item_id = store.add_item(name, category, image_filename)
        app.logger.info("Received %s from category: %s (id=%s)", name, category, item_id)
        return jsonify(message=f"item received: {name}", id=item_id)

    @app.route("/categories", methods=["GET"])
    def get_categories():
        return jsonify(categories=store.list_categories())

    @app.route("/image/<image_filename>", methods=["GET"])
    def get_image(image_filename):
        path = resolve_image_path(app.config["IMAGE_DIR"], image_filename)
        if not path.is_file():
            app.logger.warning("Default image missing: %s", path)
            return jsonify(message="Not found"), 404
        return send_file(path.resolve(), mimetype="image/jpeg")


# --- COMMANDS ---
def register_commands(app, store):
    @app.cli.command("init-db")
    def init_db():
        """Create the catalog tables if they do not exist."""
        db.create_all()
        click.echo("Database ready.")

    @app.cli.command("import-items")
    @click.argument("path", type=click.Path(exists=True, dir_okay=False))
    def import_items(path):
        """Load items from a JSON file of the form {"items": [...]}.

        Each item's ``image`` is a path to an image file, relative to the
        JSON file. Its content is stored under the content-addressed name.
        """
        base_dir = Path(path).parent
        with open(path, "r", encoding="utf-8") as file:
            data = json.load(file)

        # Read every image before writing anything so a bad entry imports nothing
        entries = []
        for index, item_data in enumerate(data.get("items", [])):
            try:
                name, category, image = item_data["name"], item_data["category"], item_data["image"]
            except KeyError as e:
                raise click.ClickException(f"item {index} is missing the {e.args[0]!r} field")
            image_path = base_dir / image
            try:
                image_bytes = image_path.read_bytes()
            except OSError as e:
                raise click.ClickException(f"item {index}: cannot read image {image_path}: {e.strerror}")
            entries.append((name, category, image_bytes))

        for name, category, image_bytes in entries:
            image_filename = save_image(app.config["IMAGE_DIR"], image_bytes)
            store.add_item(name, category, image_filename)
        click.echo(f"Imported {len(entries)} items.")


# --- STARTUP ---
if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    create_app().run(port=int(os.environ.get("PORT", 9000)))
