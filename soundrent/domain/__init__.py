"""Business domains - one package per area (schemas, repository, service, router)"""
