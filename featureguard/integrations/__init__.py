"""Framework integrations. Import the submodule for the framework you use."""
