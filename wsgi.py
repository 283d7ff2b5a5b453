from storybot import create_app

app = create_app()
