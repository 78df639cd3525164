from app.kibbledrop import create_app

app = create_app()
