import os,yaml
_cfg=None
def config_path():
  return os.getenv('ESCAPE_CONFIG') or os.path.join(os.path.dirname(__file__),'..','config.yaml')
def get_config():
  global _cfg
  if _cfg is not None: return _cfg
  try:
    with open(config_path(),'r',encoding='utf-8') as f: _cfg=yaml.safe_load(f) or {}
  except (OSError, yaml.YAMLError):
    _cfg={}
  return _cfg
def reset_config():
  global _cfg
  _cfg=None
def section(name:str)->dict:
  return get_config().get(name,{}) or {}

# exam
def max_level()->int: return int(section('exam').get('max_level',5))
def sentinel_level()->int: return int(section('exam').get('sentinel_level',max_level()))
def sentinel_answer()->str: return str(section('exam').get('sentinel_answer','PASSED'))
def sentinel_bonus()->int: return int(section('exam').get('sentinel_bonus',50))
def level_durations()->dict:
  raw=section('exam').get('level_durations') or {1:180,2:240,3:360,4:300,5:180}
  return {int(k):int(v) for k,v in raw.items()}
def default_duration_sec()->int: return int(section('exam').get('default_duration_sec',300))

# anti-cheat
def penalty_points()->int: return int(section('anti_cheat').get('penalty_points',10))
def debounce_ms()->int: return int(section('anti_cheat').get('debounce_ms',1500))
def min_hidden_ms()->int: return int(section('anti_cheat').get('min_hidden_ms',300))
def max_hidden_ms()->int: return int(section('anti_cheat').get('max_hidden_ms',600000))
def inactivity_ms()->int: return int(section('anti_cheat').get('inactivity_ms',12000))
def transition_grace_ms()->int: return int(section('anti_cheat').get('transition_grace_ms',90000))
def heartbeat_interval_ms()->int: return int(section('anti_cheat').get('heartbeat_interval_ms',4000))
def client_cooldown_ms()->int: return int(section('anti_cheat').get('client_cooldown_ms',3000))

# redirects
def leaderboard_url()->str: return section('redirects').get('leaderboard','/escape/leaderboard.html')
def level_url(level:int)->str: return section('redirects').get('level_page','/escape/levels/level{level}.html').format(level=level)
