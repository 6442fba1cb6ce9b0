#fleet_engine\api\container.py
from fleet_engine.container import FleetContainer, get_container


def get_fleet_container() -> FleetContainer:
    return get_container()
