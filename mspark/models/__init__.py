from .user import User, UserRole
from .gem import Gem
from .auction import Auction
from .bid import Bid
from .payment import Payment
from .mspark import Mspark
from .wallet import Wallet
