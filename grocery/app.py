# module grocery.app
from grocery.app_setup.factory import create_app

# App globale
app = create_app()
