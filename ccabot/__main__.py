from ccabot.main import run

run()
