from reshard.clients.imgapi import ImgapiClient
from reshard.clients.sapi import SapiClient
from reshard.clients.zone_exec import ZoneExecClient

__all__ = ["ImgapiClient", "SapiClient", "ZoneExecClient"]
