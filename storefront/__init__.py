import logging

import requests
from flask import Flask

from .config import Config


def create_app(overrides=None):
    app = Flask(__name__, template_folder='templates')
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(level=app.config['LOG_LEVEL'],
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    # one connection pool per app; fetch threads belong to each view
    app.extensions['storefront.http'] = requests.Session()

    from .views import bp
    app.register_blueprint(bp)
    return app
