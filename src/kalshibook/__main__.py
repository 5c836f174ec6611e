from kalshibook.streamer import run

run()
