from domain_research.cli import main

main()
