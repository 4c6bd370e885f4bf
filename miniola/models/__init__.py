from miniola.models.rider import Rider
from miniola.models.driver import Driver
from miniola.models.ride import Ride
from miniola.models.payment import Payment
from miniola.models.refresh_token import RefreshToken

# An authenticated caller is exactly one of these.
Account = Rider | Driver

__all__ = ["Rider", "Driver", "Ride", "Payment", "RefreshToken", "Account"]
