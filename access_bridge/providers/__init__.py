"""
Collaborator adapters.

    providers/controller/<name>.py  - local door controller (ControllerAdapter)
    providers/cloud/<name>.py       - cloud credential service (CloudAdapter)

Each provider module exports create_provider(settings); the ServiceContainer
imports the module named by CONTROLLER_PROVIDER / CLOUD_PROVIDER.
"""
