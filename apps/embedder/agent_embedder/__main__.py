from agent_embedder.cli import main

main()
